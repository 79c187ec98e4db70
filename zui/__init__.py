"""Live terminal dashboard for a single node."""

__version__ = "0.1.0"
