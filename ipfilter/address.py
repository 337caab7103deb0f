"""Parse textual IPv4/IPv6 addresses, with optional ports, into comparable values."""

from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address, ip_address

from .errors import ParseError


@dataclass(frozen=True)
class Address:
    """A parsed address. Equality ignores the source text."""

    ip: IPv4Address | IPv6Address
    source: str | None = field(default=None, compare=False)

    @property
    def family(self) -> int:
        return self.ip.version

    @property
    def bits(self) -> int:
        return self.ip.max_prefixlen

    @property
    def value(self) -> int:
        return int(self.ip)

    def __str__(self) -> str:
        return str(self.ip)


def to_numeric(address: Address) -> int:
    """Return the 32-bit (v4) or 128-bit (v6) unsigned value of *address*."""
    return address.value


def _is_port(text: str) -> bool:
    return text.isascii() and text.isdigit()


def _parse_ip(text: str) -> IPv4Address | IPv6Address | None:
    try:
        return ip_address(text)
    except ValueError:
        return None


def _split_host(text: str) -> IPv4Address | IPv6Address | None:
    if text.startswith("["):
        end = text.find("]")
        if end == -1:
            return None
        rest = text[end + 1:]
        if rest and not (rest.startswith(":") and _is_port(rest[1:])):
            return None
        addr = _parse_ip(text[1:end])
        return addr if isinstance(addr, IPv6Address) else None

    addr = _parse_ip(text)
    if addr is not None:
        return addr

    # Anything left must end in ":port". A single colon can only be
    # "a.b.c.d:port"; with more colons the host has to be valid IPv6 on
    # its own, e.g. "::ffff:10.0.0.1:8080" or a full eight-group address.
    host, sep, port = text.rpartition(":")
    if not sep or not _is_port(port):
        return None
    addr = _parse_ip(host)
    if addr is None:
        return None
    if ":" in host and not isinstance(addr, IPv6Address):
        return None
    return addr


def parse_address(text: str) -> Address:
    """Parse *text* into an :class:`Address`.

    Accepts dotted-quad IPv4, bare or bracketed IPv6 and IPv4-mapped IPv6
    (``::ffff:a.b.c.d``), each optionally followed by ``:port``. Mapped
    addresses are normalized to plain IPv4.

    Raises :class:`ParseError` when the text is not a valid address.
    """
    if not isinstance(text, str):
        raise ParseError(f"Expected address text, got {type(text).__name__}")
    stripped = text.strip()
    if not stripped:
        raise ParseError("Empty address")

    addr = _split_host(stripped)
    if addr is None:
        raise ParseError(f"Invalid IP address: {text!r}")

    if isinstance(addr, IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return Address(addr, source=stripped)


def try_parse_address(text: str | None) -> Address | None:
    """Like :func:`parse_address` but returns None for missing or bad input."""
    if text is None:
        return None
    try:
        return parse_address(text)
    except ParseError:
        return None
