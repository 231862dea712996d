"""OpenFaaS Functions Operator: reconciles OpenFaaSFunction resources into Deployments and Services."""

__version__ = "0.3.0"
