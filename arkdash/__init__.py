"""ARK dashboard client: job progress tracking over push and poll channels."""

__version__ = "0.1.0"
