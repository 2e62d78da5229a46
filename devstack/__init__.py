"""devstack: image builds and instance scaling for multi-container development environments."""

__version__ = "1.0.0"
