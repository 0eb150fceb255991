"""Cloud adaptor: RKE and imported Kubernetes cluster lifecycle service."""

__version__ = "0.1.0"
