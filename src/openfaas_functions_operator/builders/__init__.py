"""Builders for Kubernetes resources."""
