"""CLI entry point for ipfilter: check how an address would be treated by a policy."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import parse_ip_list, parse_trust_proxy
from .errors import ConfigError
from .filter import IpFilter, RequestMeta


def _cmd_check(args: argparse.Namespace) -> int:
    headers = {}
    if args.forwarded_for:
        headers[args.header] = args.forwarded_for

    try:
        ip_filter = IpFilter(
            parse_ip_list(",".join(args.entries)),
            mode=args.mode,
            trust_proxy=parse_trust_proxy(args.trust_proxy),
            allowed_headers=[args.header],
            log=False,
        )
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    decision = ip_filter.decide(RequestMeta.build(args.address, headers))

    print("allow" if decision.admit else "deny")
    print(f"  address: {decision.address_text}")
    if decision.matched_entry is not None:
        print(f"  matched: {decision.matched_entry}")
    return 0 if decision.admit else 1


def main() -> None:
    logging.basicConfig(level=logging.ERROR)

    parser = argparse.ArgumentParser(
        prog="ipfilter",
        description="Check whether an address is admitted by an allow/deny list",
    )
    sub = parser.add_subparsers(dest="command")

    check_parser = sub.add_parser("check", help="Decide a single address against a list of entries")
    check_parser.add_argument("address", help="Socket peer address (e.g. 127.0.0.1 or [::1]:8080)")
    check_parser.add_argument(
        "entries",
        nargs="*",
        help="Policy entries: address, CIDR block or start-end range",
    )
    check_parser.add_argument(
        "-m", "--mode",
        choices=["allow", "deny"],
        default="deny",
        help="Treat entries as an allow list or a deny list (default: deny)",
    )
    check_parser.add_argument(
        "--forwarded-for",
        default=None,
        help="Forwarding header value, outermost client first",
    )
    check_parser.add_argument(
        "--header",
        default="x-forwarded-for",
        help="Forwarding header name (default: x-forwarded-for)",
    )
    check_parser.add_argument(
        "--trust-proxy",
        default="false",
        help="true, false, a hop count, or a comma list of trusted proxies (default: false)",
    )

    args = parser.parse_args()

    if args.command == "check":
        sys.exit(_cmd_check(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
