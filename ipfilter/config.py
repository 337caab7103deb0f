from __future__ import annotations

from pydantic_settings import BaseSettings

from .filter import IpFilter


def _split(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_ip_list(raw: str) -> list:
    """Parse ``"10.0.0.1,10.0.0.0/8,10.0.1.1-10.0.1.9"`` into filter entries."""
    entries: list = []
    for entry in _split(raw):
        if "-" in entry:
            low, _, high = entry.partition("-")
            entries.append([low.strip(), high.strip()])
        else:
            entries.append(entry)
    return entries


def parse_trust_proxy(raw: str):
    """Map the textual trust setting to the value ``compile_trust`` expects."""
    value = raw.strip()
    lowered = value.lower()
    if lowered in ("", "false", "no", "0"):
        return False
    if lowered in ("true", "yes"):
        return True
    if value.isascii() and value.isdigit():
        return int(value)
    return value


class IpFilterSettings(BaseSettings):
    enabled: bool = True
    ips: str = ""  # e.g. "127.0.0.1,10.0.0.0/8,192.168.1.10-192.168.1.20"
    mode: str = "deny"
    trust_proxy: str = "false"  # true | false | hop count | comma list
    allowed_headers: str = "x-forwarded-for"

    log: bool = True
    log_level: str = "all"

    # Route regexes that bypass filtering
    excluding: str = ""

    model_config = {"env_file": ".env", "env_prefix": "IPFILTER_", "extra": "ignore"}


def build_filter(settings: IpFilterSettings) -> IpFilter:
    return IpFilter(
        parse_ip_list(settings.ips),
        mode=settings.mode,
        trust_proxy=parse_trust_proxy(settings.trust_proxy),
        allowed_headers=_split(settings.allowed_headers),
        log=settings.log,
        log_level=settings.log_level,
        excluding=_split(settings.excluding),
    )


settings = IpFilterSettings()
