"""Proxy trust settings and client address resolution through forwarding headers.

The hop chain is ordered from the server outward::

    [socket peer, last forwarded address, ..., first forwarded address]

Resolution walks that chain from the socket peer and stops at the first
hop the trust predicate rejects; that hop is the client. When every hop
but the last is trusted, the outermost client-declared address wins.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence

from .address import Address, parse_address, try_parse_address
from .errors import ConfigError, ParseError
from .policy import CidrEntry, ExactEntry, PolicyEntry, parse_cidr

TrustPredicate = Callable[[Address, int], bool]

DEFAULT_FORWARDING_HEADERS = ("x-forwarded-for",)

# Named groups accepted in trust lists
TRUST_PRESETS: dict[str, tuple[str, ...]] = {
    "linklocal": ("169.254.0.0/16", "fe80::/10"),
    "loopback": ("127.0.0.1/8", "::1/128"),
    "uniquelocal": ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7"),
}

_SPLIT_RE = re.compile(r"[,\s]+")


def trust_all(address: Address, hop: int) -> bool:
    return True


def trust_none(address: Address, hop: int) -> bool:
    return False


class HopCountTrust:
    """Trust the nearest *hops* hops counted from the server side."""

    def __init__(self, hops: int) -> None:
        self.hops = hops

    def __call__(self, address: Address, hop: int) -> bool:
        return hop < self.hops


def _trusts_missing_hop(trust: TrustPredicate, hop: int) -> bool:
    """Whether a hop with no address can be walked past.

    Only predicates that ignore the address qualify.
    """
    if trust is trust_all:
        return True
    return isinstance(trust, HopCountTrust) and hop < trust.hops


def _netmask_to_prefix(mask: str, network: Address, raw: str) -> int:
    try:
        mask_addr = parse_address(mask)
    except ParseError as exc:
        raise ConfigError(f"Invalid netmask in trusted proxy {raw!r}") from exc
    if mask_addr.family != network.family:
        raise ConfigError(f"Netmask family differs from address in trusted proxy {raw!r}")
    value, bits = mask_addr.value, mask_addr.bits
    prefix = bin(value).count("1")
    if value != ((1 << bits) - 1) ^ ((1 << (bits - prefix)) - 1):
        raise ConfigError(f"Non-contiguous netmask in trusted proxy {raw!r}")
    return prefix


def _parse_trusted(raw: str) -> PolicyEntry:
    host, sep, suffix = raw.partition("/")
    suffix = suffix.strip()
    if sep and suffix.isascii() and suffix.isdigit():
        return parse_cidr(raw)
    try:
        network = parse_address(host)
    except ParseError as exc:
        raise ConfigError(f"Invalid trusted proxy address {raw!r}") from exc
    if not sep:
        return ExactEntry(network)
    return CidrEntry(network, _netmask_to_prefix(suffix, network, raw))


def compile_trusted_addresses(values: Iterable[str]) -> tuple[PolicyEntry, ...]:
    """Expand preset names and parse addresses, CIDRs and ``addr/netmask`` pairs."""
    entries: list[PolicyEntry] = []
    for value in values:
        value = value.strip()
        if not value:
            continue
        for item in TRUST_PRESETS.get(value.lower(), (value,)):
            entries.append(_parse_trusted(item))
    return tuple(entries)


def compile_trust(value) -> TrustPredicate:
    """Normalize a trust setting into a single ``(address, hop) -> bool`` predicate.

    Accepted forms: a callable (used as is), ``True``/``False``, a hop count
    (trust the nearest N hops), a comma-separated string or a list of
    addresses, CIDR blocks and preset names (``loopback``, ``linklocal``,
    ``uniquelocal``).
    """
    if callable(value):
        return value

    if value is True:
        return trust_all

    if value is None or value is False:
        return trust_none

    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"Trusted hop count must be >= 0, got {value}")
        return HopCountTrust(value)

    if isinstance(value, str):
        value = value.split(",")

    if isinstance(value, (list, tuple, set, frozenset)):
        trusted = compile_trusted_addresses(value)
        if not trusted:
            return trust_none
        return lambda address, hop: any(entry.matches(address) for entry in trusted)

    raise ConfigError(f"Unsupported trust proxy setting {type(value).__name__}: {value!r}")


def split_forwarded(value: str | None) -> list[str]:
    """Split a forwarding header value (comma and/or space separated), outermost first."""
    if not value:
        return []
    return [part for part in _SPLIT_RE.split(value.strip()) if part]


def _header_value(headers: Mapping[str, str], name: str) -> str | None:
    # Repeated header lines form one comma-separated list (RFC 7230 3.2.2)
    if hasattr(headers, "getlist"):
        values = [value for value in headers.getlist(name) if value]
        return ", ".join(values) if values else None
    return headers.get(name)


def forwarded_chain(headers: Mapping[str, str], allowed_headers: Sequence[str]) -> list[str]:
    """Addresses from the first allowed header present, outermost first."""
    for name in allowed_headers:
        chain = split_forwarded(_header_value(headers, name))
        if chain:
            return chain
    return []


def hop_chain(client_host: str | None, forwarded: Sequence[str]) -> list[str | None]:
    """Order hops from the socket peer outward.

    A missing socket peer keeps its slot as None.
    """
    return [client_host or None, *reversed(forwarded)]


def resolve_address(
    client_host: str | None,
    headers: Mapping[str, str],
    trust: TrustPredicate,
    allowed_headers: Sequence[str] = DEFAULT_FORWARDING_HEADERS,
) -> Address | None:
    """Resolve the client address, or None when it cannot be determined.

    A missing socket peer is walked past only when trust ignores the
    address (trust all, or a hop count covering it); otherwise, or when a
    walked hop does not parse, the address is unknown.
    """
    forwarded = forwarded_chain(headers, allowed_headers) if allowed_headers else []
    hops = hop_chain(client_host, forwarded)

    last = len(hops) - 1
    for index, text in enumerate(hops):
        if text is None:
            if index == last or not _trusts_missing_hop(trust, index):
                return None
            continue
        address = try_parse_address(text)
        if address is None:
            return None
        if index == last or not trust(address, index):
            return address
    return None
