"""Dropbox sync and folder provisioning engine."""

__version__ = "0.1.0"
