"""Handlers for OpenFaaSFunction resources."""
