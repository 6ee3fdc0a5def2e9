"""Self-hosting project bootstrapper: task orchestration and package prefetch."""

__version__ = "0.4.0"
