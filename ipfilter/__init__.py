"""Allow/deny filtering of requests by client IP address."""

from .address import Address, parse_address, to_numeric
from .errors import ConfigError, IpDeniedError, ParseError
from .filter import Decision, IpFilter, RequestMeta
from .policy import (
    CallablePolicySource,
    CidrEntry,
    ExactEntry,
    Mode,
    PolicyEntry,
    PolicySource,
    RangeEntry,
    StaticPolicySource,
    evaluate,
    matches,
    parse_entry,
)
from .trust import compile_trust, resolve_address

__all__ = [
    "Address",
    "CallablePolicySource",
    "CidrEntry",
    "ConfigError",
    "Decision",
    "ExactEntry",
    "IpDeniedError",
    "IpFilter",
    "Mode",
    "ParseError",
    "PolicyEntry",
    "PolicySource",
    "RangeEntry",
    "RequestMeta",
    "StaticPolicySource",
    "compile_trust",
    "evaluate",
    "matches",
    "parse_address",
    "parse_entry",
    "resolve_address",
    "to_numeric",
]
