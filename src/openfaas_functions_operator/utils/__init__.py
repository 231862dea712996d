"""Utility functions for the OpenFaaS Functions Operator."""
