"""WSGI web interface of a music server: handlers, authentication and a standalone server."""

__version__ = "0.1.0"