"""kubesnap: capture a Kubernetes cluster snapshot and replay it as a read-only API."""

__version__ = "0.1.0"
