"""Exceptions raised by the IP filter."""

from __future__ import annotations


class ParseError(ValueError):
    """Text is not a valid IPv4/IPv6 address."""


class ConfigError(ValueError):
    """Invalid filter configuration (entries, trust settings, modes)."""


class IpDeniedError(Exception):
    """Structured rejection for a request whose address was denied."""

    default_message = "The requesting IP was denied"

    def __init__(self, message: str | None = None, extra: dict | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.extra = extra or {}
        self.status_code = 403
