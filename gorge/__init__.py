"""Puppet Forge building blocks: a filesystem module store, API operations and WSGI middleware."""

__version__ = "0.7.0"
__all__ = ["__version__"]