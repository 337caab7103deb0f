"""Tests for IpFilter decisions, exclusions and decision logging."""

from __future__ import annotations

import logging

import pytest

from ipfilter.errors import ConfigError, IpDeniedError
from ipfilter.filter import IpFilter, RequestMeta


def meta(client_host="", forwarded=None, url="/", headers=None, request=None):
    headers = dict(headers or {})
    if forwarded is not None:
        headers["X-Forwarded-For"] = forwarded
    return RequestMeta.build(client_host, headers, url=url, request=request)


def admitted(ip_filter, *args, **kwargs):
    return ip_filter.decide(meta(*args, **kwargs)).admit


class TestBlacklist:
    def _filter(self, **kwargs):
        return IpFilter(["127.0.0.1"], log=False, trust_proxy=True, **kwargs)

    def test_allows_non_blacklisted(self):
        f = self._filter()
        assert admitted(f, "127.0.0.2") is True
        assert admitted(f, "::1") is True
        assert admitted(f, "::ffff:127.0.0.2") is True

    def test_allows_non_blacklisted_forwarded(self):
        f = self._filter()
        assert admitted(f, "", "127.0.0.2") is True
        assert admitted(f, "", "127.0.0.2 127.0.0.3") is True

    def test_denies_blacklisted(self):
        f = self._filter()
        assert admitted(f, "127.0.0.1") is False
        assert admitted(f, "::ffff:127.0.0.1") is False

    def test_denies_blacklisted_forwarded(self):
        assert admitted(self._filter(), "", "127.0.0.1") is False

    def test_deny_is_the_default_mode(self):
        f = IpFilter(["127.0.0.1"], log=False)
        assert f.mode.value == "deny"
        assert admitted(f, "127.0.0.1") is False

    def test_matched_entry_reported(self):
        decision = self._filter().decide(meta("127.0.0.1"))
        assert str(decision.matched_entry) == "127.0.0.1"
        assert str(decision.address) == "127.0.0.1"


class TestWhitelist:
    def _filter(self, ips):
        return IpFilter(ips, mode="allow", log=False, trust_proxy=True)

    def test_exact(self):
        f = self._filter(["127.0.0.1"])
        assert admitted(f, "127.0.0.1") is True
        assert admitted(f, "127.0.0.1:84849") is True
        assert admitted(f, "", "127.0.0.1") is True
        assert admitted(f, "127.0.0.2") is False
        assert admitted(f, "", "127.0.0.2") is False

    def test_cidr(self):
        f = self._filter(["127.0.0.1/28"])
        assert admitted(f, "127.0.0.14") is True
        assert admitted(f, "", "127.0.0.1:23456") is True
        assert admitted(f, "127.0.0.17") is False

    def test_range(self):
        f = self._filter([["127.0.0.1", "127.0.0.10"]])
        assert admitted(f, "127.0.0.1:93923") is True
        assert admitted(f, "", "127.0.0.1:23456") is True
        assert admitted(f, "127.0.0.17:23456") is False

    def test_single_address_range(self):
        f = self._filter([["127.0.0.1"]])
        assert admitted(f, "127.0.0.1") is True
        assert admitted(f, "127.0.0.17") is False

    def test_mapped_candidate(self):
        assert admitted(self._filter(["127.0.0.1"]), "::ffff:127.0.0.1") is True


class TestMixedEntries:
    IPS = [
        "127.0.0.1",
        "192.168.1.3/28",
        "2001:4860:8006::62",
        "2001:4860:8007::62/64",
        ["127.0.0.3", "127.0.0.35"],
    ]

    @pytest.mark.parametrize(
        "client",
        ["127.0.0.1", "192.168.1.1", "127.0.0.20", "2001:4860:8006::62", "2001:4860:8007:0::62"],
    )
    def test_whitelist_allows(self, client):
        assert admitted(IpFilter(self.IPS, mode="allow", log=False), client) is True

    @pytest.mark.parametrize(
        "client",
        ["127.0.0.1", "192.168.1.15", "127.0.0.15", "2001:4860:8006::62", "2001:4860:8007:0::62"],
    )
    def test_blacklist_denies(self, client):
        assert admitted(IpFilter(self.IPS, mode="deny", log=False), client) is False

    def test_unlisted_address(self):
        assert admitted(IpFilter(self.IPS, mode="allow", log=False), "8.8.8.8") is False
        assert admitted(IpFilter(self.IPS, mode="deny", log=False), "8.8.8.8") is True


class TestEmptyPolicy:
    @pytest.mark.parametrize("ips", [None, [], ()])
    def test_whitelist_denies(self, ips):
        assert admitted(IpFilter(ips, mode="allow", log=False), "127.0.0.1") is False

    @pytest.mark.parametrize("ips", [None, [], ()])
    def test_blacklist_allows(self, ips):
        assert admitted(IpFilter(ips, mode="deny", log=False), "127.0.0.1") is True


class TestUnknownAddress:
    @pytest.mark.parametrize("mode", ["allow", "deny"])
    def test_no_address_is_denied(self, mode):
        decision = IpFilter(["127.0.0.1"], mode=mode, log=False).decide(meta(""))
        assert decision.admit is False
        assert decision.address is None
        assert decision.address_text == "unknown"

    def test_forwarded_address_without_socket_peer_is_denied(self):
        f = IpFilter(["10.0.0.1"], mode="allow", log=False)
        decision = f.decide(meta(None, "10.0.0.1"))
        assert decision.admit is False
        assert decision.address is None

    def test_unparsable_address_is_denied_even_with_empty_blacklist(self):
        assert admitted(IpFilter([], mode="deny", log=False), "testclient") is False


class TestForwardingHeaders:
    def test_disabled_headers(self):
        f = IpFilter(["127.0.0.1"], log=False, trust_proxy=True, allowed_headers=[])
        assert admitted(f, "127.0.0.1", "127.0.0.2") is False

    def test_custom_header(self):
        f = IpFilter(["127.0.0.1"], log=False, trust_proxy=True, allowed_headers=["CF-Connecting-IP"])
        assert admitted(f, "127.0.0.1", headers={"cf-connecting-ip": "127.0.0.2"}) is True

    def test_single_header_name_string(self):
        f = IpFilter(["127.0.0.1"], log=False, trust_proxy=True, allowed_headers="X-Real-IP")
        assert f.allowed_headers == ("x-real-ip",)
        assert admitted(f, "127.0.0.1", headers={"x-real-ip": "127.0.0.2"}) is True

    def test_custom_header_disabled(self):
        f = IpFilter(["127.0.0.1"], log=False, trust_proxy=True, allowed_headers=[])
        assert admitted(f, "127.0.0.1", headers={"cf-connecting-ip": "127.0.0.2"}) is False

    def test_untrusted_proxy_header_ignored(self):
        f = IpFilter(["127.0.0.1"], mode="allow", log=False)
        assert admitted(f, "10.0.0.1", "127.0.0.1") is False


class TestCustomDetection:
    def test_detector_receives_raw_request(self):
        class FakeRequest:
            remote = "127/0/0/1"

        def detect_ip(request):
            return request.remote.replace("/", ".")

        f = IpFilter(["127.0.0.1"], detect_ip=detect_ip, log=False, allowed_headers=["x-forwarded-for"])
        decision = f.decide(meta("10.0.0.1", "10.0.0.2", request=FakeRequest()))
        assert decision.admit is False
        assert str(decision.address) == "127.0.0.1"

    def test_detector_output_still_parsed(self):
        f = IpFilter([], detect_ip=lambda request: "not an ip", log=False)
        assert admitted(f, "127.0.0.1") is False

    def test_detector_none_is_unknown(self):
        f = IpFilter([], detect_ip=lambda request: None, log=False)
        assert admitted(f, "127.0.0.1") is False


class TestDynamicIps:
    def test_callable_whitelist(self):
        f = IpFilter(lambda: ["127.0.0.1"], mode="allow", log=False)
        assert admitted(f, "127.0.0.1") is True
        assert admitted(f, "127.0.0.2") is False

    def test_callable_blacklist(self):
        f = IpFilter(lambda: ["127.0.0.1"], mode="deny", log=False)
        assert admitted(f, "127.0.0.2") is True
        assert admitted(f, "127.0.0.1") is False

    def test_callable_reconsulted_per_decision(self):
        blocked = ["127.0.0.1"]
        f = IpFilter(lambda: blocked, log=False)
        assert admitted(f, "127.0.0.2") is True
        blocked.append("127.0.0.2")
        assert admitted(f, "127.0.0.2") is False


class TestExclusions:
    def _filter(self, **kwargs):
        return IpFilter(["127.0.0.1"], mode="allow", excluding=["/foo.*"], **kwargs)

    def test_excluded_path_admitted(self):
        decision = self._filter(log=False).decide(meta("190.0.0.0", url="/foo?bar=123"))
        assert decision.admit is True
        assert decision.excluded_by == "/foo.*"
        assert decision.address is None

    def test_other_path_filtered(self):
        assert admitted(self._filter(log=False), "190.0.0.0", url="/bar") is False

    def test_unknown_address_on_other_path(self):
        assert admitted(self._filter(log=False), "", url="/bar") is False

    def test_invalid_pattern(self):
        with pytest.raises(ConfigError):
            IpFilter([], excluding=["("])


class TestConfiguration:
    def test_invalid_mode(self):
        with pytest.raises(ConfigError):
            IpFilter([], mode="block")

    def test_mode_case_insensitive(self):
        assert IpFilter([], mode="ALLOW").mode.value == "allow"

    def test_invalid_log_level(self):
        with pytest.raises(ConfigError):
            IpFilter([], log_level="warn")

    def test_invalid_entry(self):
        with pytest.raises(ConfigError):
            IpFilter(["127.0.0.1/40"])

    def test_invalid_trust(self):
        with pytest.raises(ConfigError):
            IpFilter([], trust_proxy=-3)

    def test_trust_forms(self):
        for trust in (lambda a, i: True, 5, "127.0.0.1,127.0.0.2", ["127.0.0.1"]):
            f = IpFilter(["127.0.0.1"], trust_proxy=trust, log=False)
            assert admitted(f, "127.0.0.1") is False
            assert admitted(f, "127.0.0.1", "127.0.0.9") is True


class TestCheck:
    def test_raises_denied_error(self):
        f = IpFilter(["127.0.0.1"], log=False)
        with pytest.raises(IpDeniedError) as excinfo:
            f.check(meta("127.0.0.1"))
        assert excinfo.value.message == "Access denied to IP address: 127.0.0.1"
        assert excinfo.value.extra == {"ip": "127.0.0.1"}
        assert excinfo.value.status_code == 403

    def test_returns_admitting_decision(self):
        decision = IpFilter(["127.0.0.1"], log=False).check(meta("127.0.0.2"))
        assert decision.admit is True


class TestDeniedError:
    def test_custom_message(self):
        err = IpDeniedError("custom message")
        assert err.message == "custom message"
        assert str(err) == "custom message"

    def test_default_message(self):
        err = IpDeniedError()
        assert err.message == "The requesting IP was denied"
        assert err.extra == {}
        assert err.status_code == 403


class TestLogging:
    def _filter(self, **kwargs):
        messages = []
        f = IpFilter(["127.0.0.1"], log_func=messages.append, **kwargs)
        return f, messages

    def test_logs_exactly_one_message(self):
        f, messages = self._filter()
        f.decide(meta("127.0.0.1"))
        assert messages == ["Access denied to IP address: 127.0.0.1"]

    def test_logs_grant(self):
        f, messages = self._filter()
        f.decide(meta("127.0.0.2"))
        assert messages == ["Access granted to IP address: 127.0.0.2"]

    def test_level_all(self):
        f, messages = self._filter(log_level="all")
        f.decide(meta("127.0.0.1"))
        f.decide(meta("127.0.0.2"))
        assert messages == [
            "Access denied to IP address: 127.0.0.1",
            "Access granted to IP address: 127.0.0.2",
        ]

    def test_level_allow_skips_denials(self):
        f, messages = self._filter(log_level="allow")
        f.decide(meta("127.0.0.1"))
        assert messages == []
        f.decide(meta("127.0.0.2"))
        assert messages == ["Access granted to IP address: 127.0.0.2"]

    def test_level_deny_skips_grants(self):
        f, messages = self._filter(log_level="deny")
        f.decide(meta("127.0.0.2"))
        assert messages == []
        f.decide(meta("127.0.0.1"))
        assert messages == ["Access denied to IP address: 127.0.0.1"]

    def test_level_deny_skips_excluded_paths(self):
        f, messages = self._filter(log_level="deny", excluding=["/foo.*"])
        f.decide(meta("127.0.0.1", url="/foo"))
        assert messages == []

    def test_excluded_path_message(self):
        f, messages = self._filter(log_level="allow", excluding=["/foo.*"])
        f.decide(meta("190.0.0.0", url="/foo?bar=123"))
        assert messages == ["Access granted for excluded path: /foo.*"]

    def test_log_disabled(self):
        f, messages = self._filter(log=False)
        f.decide(meta("127.0.0.1"))
        assert messages == []

    def test_unknown_address_message(self):
        f, messages = self._filter()
        f.decide(meta(""))
        assert messages == ["Access denied to IP address: unknown"]

    def test_defaults_to_module_logger(self, caplog):
        f = IpFilter(["127.0.0.1"])
        with caplog.at_level(logging.INFO, logger="ipfilter.filter"):
            f.decide(meta("127.0.0.1"))
            f.decide(meta("127.0.0.2"))
        records = [
            (r.levelno, r.getMessage())
            for r in caplog.records
            if r.name == "ipfilter.filter" and r.getMessage().startswith("Access")
        ]
        assert records == [
            (logging.WARNING, "Access denied to IP address: 127.0.0.1"),
            (logging.INFO, "Access granted to IP address: 127.0.0.2"),
        ]
