"""Exceptions surfaced to the operator."""

from __future__ import annotations


class ProxyError(Exception):
    """Base class for errors that end a proxy session."""


class ConfigError(ProxyError):
    """Invalid or incomplete configuration."""


class TransportError(ProxyError):
    """The server process or its channel could not be set up."""
