"""Per-request IP filtering: route exclusions, address resolution, policy decision."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .address import Address, try_parse_address
from .errors import ConfigError, IpDeniedError
from .policy import Mode, PolicyEntry, as_policy_source, find_match
from .trust import DEFAULT_FORWARDING_HEADERS, compile_trust, resolve_address

logger = logging.getLogger(__name__)

LOG_LEVELS = ("all", "allow", "deny")

UNKNOWN_ADDRESS = "unknown"


@dataclass(frozen=True)
class RequestMeta:
    """What the filter needs to know about an incoming request."""

    client_host: str | None
    headers: Mapping[str, str] = field(default_factory=dict)
    url: str = "/"
    request: Any = None

    @classmethod
    def build(
        cls,
        client_host: str | None,
        headers: Mapping[str, str] | None = None,
        url: str = "/",
        request: Any = None,
    ) -> RequestMeta:
        lowered = {name.lower(): value for name, value in (headers or {}).items()}
        return cls(client_host=client_host, headers=lowered, url=url, request=request)


@dataclass(frozen=True)
class Decision:
    admit: bool
    address: Address | None = None
    matched_entry: PolicyEntry | None = None
    excluded_by: str | None = None

    @property
    def address_text(self) -> str:
        if self.address is None:
            return UNKNOWN_ADDRESS
        return self.address.source or str(self.address)

    def error(self) -> IpDeniedError:
        ip = self.address_text
        return IpDeniedError(f"Access denied to IP address: {ip}", {"ip": ip})


class IpFilter:
    """Decide whether requests are admitted under an allow or deny list.

    ``ips`` is a list of entries (``"10.0.0.1"``, ``"10.0.0.0/8"``,
    ``["10.0.0.1", "10.0.0.9"]``) or a zero-argument callable returning one,
    consulted once per decision. Instances hold no per-request state.
    """

    def __init__(
        self,
        ips=None,
        *,
        mode: str | Mode = Mode.DENY,
        trust_proxy=False,
        allowed_headers: Iterable[str] | None = DEFAULT_FORWARDING_HEADERS,
        detect_ip: Callable[[Any], str | None] | None = None,
        log: bool = True,
        log_level: str = "all",
        log_func: Callable[[str], None] | None = None,
        excluding: Iterable[str] = (),
    ) -> None:
        self.mode = Mode.parse(mode)
        self.source = as_policy_source(ips)
        self.trust = compile_trust(trust_proxy)
        if isinstance(allowed_headers, str):
            allowed_headers = [allowed_headers]
        self.allowed_headers: tuple[str, ...] = tuple(h.strip().lower() for h in allowed_headers or () if h.strip())
        self.detect_ip = detect_ip
        self.log = log
        self.log_level = str(log_level).strip().lower()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level {log_level!r}: expected one of {', '.join(LOG_LEVELS)}")
        self.log_func = log_func
        self.excluding = self._compile_exclusions(excluding)

        if hasattr(self.source, "__len__"):
            logger.info("IP filter (%s) configured with %d entry(ies)", self.mode.value, len(self.source))

    @staticmethod
    def _compile_exclusions(patterns: Iterable[str]) -> tuple[tuple[str, re.Pattern], ...]:
        compiled = []
        for pattern in patterns:
            try:
                compiled.append((pattern, re.compile(pattern)))
            except re.error as exc:
                raise ConfigError(f"Invalid exclusion pattern {pattern!r}: {exc}") from exc
        return tuple(compiled)

    def excluded_pattern(self, url: str) -> str | None:
        for pattern, regex in self.excluding:
            if regex.search(url):
                return pattern
        return None

    def resolve(self, meta: RequestMeta) -> Address | None:
        if self.detect_ip is not None:
            return try_parse_address(self.detect_ip(meta.request if meta.request is not None else meta))
        return resolve_address(meta.client_host, meta.headers, self.trust, self.allowed_headers)

    def entries(self) -> Sequence[PolicyEntry]:
        return self.source.entries()

    def decide(self, meta: RequestMeta) -> Decision:
        pattern = self.excluded_pattern(meta.url) if self.excluding else None
        if pattern is not None:
            if self.log and self.log_level != "deny":
                self._emit(f"Access granted for excluded path: {pattern}", denied=False)
            return Decision(admit=True, excluded_by=pattern)

        address = self.resolve(meta)
        matched = find_match(address, self.entries()) if address is not None else None

        # allow admits matches, deny admits non-matches; unknown never passes
        admit = address is not None and (matched is not None) == (self.mode is Mode.ALLOW)

        decision = Decision(admit=admit, address=address, matched_entry=matched)
        if admit:
            if self.log and self.log_level != "deny":
                self._emit(f"Access granted to IP address: {decision.address_text}", denied=False)
        elif self.log and self.log_level != "allow":
            self._emit(f"Access denied to IP address: {decision.address_text}", denied=True)
        return decision

    def check(self, meta: RequestMeta) -> Decision:
        """Like :meth:`decide` but raises :class:`IpDeniedError` on reject."""
        decision = self.decide(meta)
        if not decision.admit:
            raise decision.error()
        return decision

    def _emit(self, message: str, *, denied: bool) -> None:
        if self.log_func is not None:
            self.log_func(message)
        elif denied:
            logger.warning(message)
        else:
            logger.info(message)
