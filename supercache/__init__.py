"""Configuration, logging setup, peer authentication, backoff and management API for a replicated cache server."""

__version__ = "0.1.0"