"""Policy entries (exact / CIDR / range), policy sources and the allow/deny evaluator."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union

from .address import Address, parse_address
from .errors import ConfigError, ParseError

# Raw entry as written in configuration: "10.0.0.1", "10.0.0.0/8" or a
# one/two element sequence for a start/end range.
RawEntry = Union[str, Sequence[str]]


class Mode(str, Enum):
    ALLOW = "allow"
    DENY = "deny"

    @classmethod
    def parse(cls, value: str | Mode) -> Mode:
        if isinstance(value, Mode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigError(f"Invalid mode {value!r}: expected 'allow' or 'deny'") from None


def _mask(prefix_len: int, bits: int) -> int:
    return ((1 << bits) - 1) ^ ((1 << (bits - prefix_len)) - 1)


@dataclass(frozen=True)
class ExactEntry:
    address: Address

    def matches(self, candidate: Address) -> bool:
        return candidate.family == self.address.family and candidate.value == self.address.value

    def __str__(self) -> str:
        return str(self.address)


@dataclass(frozen=True)
class CidrEntry:
    network: Address
    prefix_len: int

    def __post_init__(self) -> None:
        if not 0 <= self.prefix_len <= self.network.bits:
            raise ConfigError(
                f"Invalid prefix length /{self.prefix_len} for IPv{self.network.family} "
                f"(expected 0..{self.network.bits})"
            )

    def matches(self, candidate: Address) -> bool:
        if candidate.family != self.network.family:
            return False
        mask = _mask(self.prefix_len, self.network.bits)
        return candidate.value & mask == self.network.value & mask

    def __str__(self) -> str:
        return f"{self.network}/{self.prefix_len}"


@dataclass(frozen=True)
class RangeEntry:
    low: Address
    high: Address

    def __post_init__(self) -> None:
        if self.low.family != self.high.family:
            raise ConfigError(f"Range bounds {self.low} and {self.high} are different address families")

    def matches(self, candidate: Address) -> bool:
        if candidate.family != self.low.family:
            return False
        return self.low.value <= candidate.value <= self.high.value

    def __str__(self) -> str:
        return f"{self.low}-{self.high}"


PolicyEntry = Union[ExactEntry, CidrEntry, RangeEntry]


def _parse_entry_address(text: str, raw: RawEntry) -> Address:
    try:
        return parse_address(text)
    except ParseError as exc:
        raise ConfigError(f"Invalid policy entry {raw!r}: {exc}") from exc


def parse_cidr(raw: str) -> CidrEntry:
    """Parse ``addr/prefix``; mapped IPv6 networks take an IPv4 prefix."""
    host, _, prefix = raw.strip().partition("/")
    network = _parse_entry_address(host, raw)
    prefix = prefix.strip()
    if not (prefix.isascii() and prefix.isdigit()):
        raise ConfigError(f"Invalid prefix length in policy entry {raw!r}")
    prefix_len = int(prefix)
    if network.source and network.source.lower().startswith("::ffff:") and network.family == 4:
        # "::ffff:10.0.0.0/104" was written against the 128-bit mapped form
        prefix_len -= 96
    return CidrEntry(network, prefix_len)


def parse_entry(raw: RawEntry | PolicyEntry) -> PolicyEntry:
    """Classify one configured entry into exactly one policy variant.

    A string containing ``/`` is a CIDR block, any other string an exact
    address. A one-element sequence is an exact address and a two-element
    sequence an inclusive start/end range.
    """
    if isinstance(raw, (ExactEntry, CidrEntry, RangeEntry)):
        return raw

    if isinstance(raw, str):
        if "/" in raw:
            return parse_cidr(raw)
        return ExactEntry(_parse_entry_address(raw, raw))

    if isinstance(raw, (list, tuple)):
        if len(raw) == 1:
            return ExactEntry(_parse_entry_address(raw[0], raw))
        if len(raw) == 2:
            low = _parse_entry_address(raw[0], raw)
            high = _parse_entry_address(raw[1], raw)
            return RangeEntry(low, high)
        raise ConfigError(f"Range entry must have one or two addresses, got {len(raw)}: {raw!r}")

    raise ConfigError(f"Unsupported policy entry type {type(raw).__name__}: {raw!r}")


def parse_entries(raw: Iterable[RawEntry | PolicyEntry] | RawEntry | None) -> tuple[PolicyEntry, ...]:
    if not raw:
        return ()
    if isinstance(raw, str):
        raw = [raw]
    return tuple(parse_entry(item) for item in raw)


class PolicySource(Protocol):
    def entries(self) -> Sequence[PolicyEntry]: ...


class StaticPolicySource:
    """Entries parsed once at construction."""

    def __init__(self, raw: Iterable[RawEntry | PolicyEntry] | RawEntry | None) -> None:
        self._entries = parse_entries(raw)

    def entries(self) -> Sequence[PolicyEntry]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)


class CallablePolicySource:
    """Late-bound entries: *provider* is called each time the policy is consulted."""

    def __init__(self, provider: Callable[[], Iterable[RawEntry | PolicyEntry] | RawEntry | None]) -> None:
        self._provider = provider

    def entries(self) -> Sequence[PolicyEntry]:
        return parse_entries(self._provider())


def as_policy_source(ips) -> PolicySource:
    """Wrap a static list, a single entry, a provider callable or a ready source."""
    if hasattr(ips, "entries") and callable(ips.entries):
        return ips
    if callable(ips):
        return CallablePolicySource(ips)
    return StaticPolicySource(ips)


def matches(entry: PolicyEntry, candidate: Address) -> bool:
    return entry.matches(candidate)


def find_match(candidate: Address, entries: Iterable[PolicyEntry]) -> PolicyEntry | None:
    """Return the first entry containing *candidate*, or None."""
    for entry in entries:
        if entry.matches(candidate):
            return entry
    return None


def evaluate(candidate: Address | None, entries: Iterable[PolicyEntry], mode: Mode | str) -> bool:
    """Return True if *candidate* is admitted under *mode*.

    ``allow`` admits only matches, ``deny`` admits only non-matches. An
    unknown candidate (None) is always rejected.
    """
    if candidate is None:
        return False
    matched_any = find_match(candidate, entries) is not None
    if Mode.parse(mode) is Mode.ALLOW:
        return matched_any
    return not matched_any
