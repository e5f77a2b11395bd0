"""ociscope - explore and maintain OCI container registries."""

__version__ = "0.1.0"
