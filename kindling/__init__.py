"""Building blocks for local Kubernetes clusters on container nodes."""

__version__ = "0.1.0"