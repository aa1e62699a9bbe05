"""Unit tests for PublicIPResolver."""

from typing import Callable, Dict, List, Union
from unittest.mock import MagicMock

import pytest
import requests

from dnsfik.errors import AddressDisagreementError, IPv6UnavailableError, ResolutionError
from dnsfik.models import RecordType
from dnsfik.public_ip import (
    CLOUDFLARE_TRACE_V4,
    CLOUDFLARE_TRACE_V6,
    PublicIPResolver,
    parse_trace,
)

IPIFY = "https://api.ipify.org?format=json"
IFCONFIG = "https://ifconfig.me/ip"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.raise_for_status = MagicMock()
    return response


Answer = Union[str, Exception]


def make_session(answers: Dict[str, Answer]) -> MagicMock:
    """Session whose get() answers per URL; an Exception value is raised.

    Lists of answers are consumed one per call.
    """
    queues: Dict[str, List[Answer]] = {
        url: list(value) if isinstance(value, list) else [value] for url, value in answers.items()
    }
    calls: List[str] = []

    def get(url: str, timeout: float = 0) -> MagicMock:
        calls.append(url)
        queue = queues.get(url)
        if not queue:
            raise requests.exceptions.ConnectionError(f"no answer for {url}")
        answer = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(answer, Exception):
            raise answer
        return _response(answer)

    session = MagicMock()
    session.get.side_effect = get
    session.calls = calls
    return session


def make_resolver(session: MagicMock, clock: Callable[[], float] = None) -> PublicIPResolver:
    return PublicIPResolver(session=session, clock=clock or FakeClock(), cache_seconds=300)


# =============================================================================
# Trace Parsing
# =============================================================================


def test_parse_trace_extracts_ip_line() -> None:
    assert parse_trace("fl=1\nh=1.1.1.1\nip=203.0.113.7\nts=1700000000\n") == "203.0.113.7"


def test_parse_trace_without_ip_raises() -> None:
    with pytest.raises(ResolutionError):
        parse_trace("fl=1\nts=1700000000\n")


# =============================================================================
# IPv4
# =============================================================================


def test_ipv4_from_cloudflare_trace() -> None:
    session = make_session({CLOUDFLARE_TRACE_V4: "ip=1.2.3.4\nts=1234567890\nuag=test\n"})
    resolver = make_resolver(session)

    assert resolver.resolve() == "1.2.3.4"
    session.get.assert_called_once_with(CLOUDFLARE_TRACE_V4, timeout=5.0)


def test_ipv4_is_cached_while_fresh() -> None:
    clock = FakeClock()
    session = make_session({CLOUDFLARE_TRACE_V4: "ip=1.2.3.4\n"})
    resolver = make_resolver(session, clock)

    assert resolver.resolve(RecordType.A) == "1.2.3.4"
    clock.advance(299)
    assert resolver.resolve(RecordType.A) == "1.2.3.4"

    assert session.get.call_count == 1


def test_stale_cache_triggers_refresh_and_overwrites() -> None:
    clock = FakeClock()
    session = make_session({CLOUDFLARE_TRACE_V4: ["ip=1.2.3.4\n", "ip=5.6.7.8\n"]})
    resolver = make_resolver(session, clock)

    assert resolver.resolve() == "1.2.3.4"
    clock.advance(301)
    assert resolver.resolve() == "5.6.7.8"
    assert resolver.cached() == "5.6.7.8"
    assert session.get.call_count == 2


def test_force_bypasses_fresh_cache() -> None:
    session = make_session({CLOUDFLARE_TRACE_V4: ["ip=1.2.3.4\n", "ip=5.6.7.8\n"]})
    resolver = make_resolver(session)

    resolver.resolve()
    assert resolver.resolve(force=True) == "5.6.7.8"


def test_ipv4_falls_back_to_agreeing_sources() -> None:
    session = make_session(
        {
            CLOUDFLARE_TRACE_V4: requests.exceptions.ConnectionError("cloudflare down"),
            IPIFY: '{"ip": "1.2.3.4"}',
            IFCONFIG: "1.2.3.4\n",
        }
    )
    resolver = make_resolver(session)

    assert resolver.resolve() == "1.2.3.4"
    assert sorted(session.calls) == sorted([CLOUDFLARE_TRACE_V4, IPIFY, IFCONFIG])


def test_ipv4_fallback_disagreement_raises() -> None:
    session = make_session(
        {
            CLOUDFLARE_TRACE_V4: requests.exceptions.Timeout("slow"),
            IPIFY: '{"ip": "1.2.3.4"}',
            IFCONFIG: "5.6.7.8",
        }
    )
    resolver = make_resolver(session)

    with pytest.raises(AddressDisagreementError) as exc_info:
        resolver.resolve()
    assert "don't match" in str(exc_info.value)
    assert resolver.cached() is None


def test_ipv4_fallback_source_failure_raises() -> None:
    session = make_session(
        {
            CLOUDFLARE_TRACE_V4: requests.exceptions.ConnectionError("down"),
            IPIFY: '{"ip": "1.2.3.4"}',
            IFCONFIG: requests.exceptions.ConnectionError("down too"),
        }
    )
    resolver = make_resolver(session)

    with pytest.raises(ResolutionError):
        resolver.resolve()


def test_ipv4_rejects_non_ipv4_answer() -> None:
    session = make_session(
        {
            CLOUDFLARE_TRACE_V4: "ip=2001:db8::1\n",
            IPIFY: '{"ip": "2001:db8::1"}',
            IFCONFIG: "2001:db8::1",
        }
    )
    resolver = make_resolver(session)

    with pytest.raises(ResolutionError):
        resolver.resolve()


def test_ipv4_failure_returns_stale_cached_value(caplog) -> None:
    clock = FakeClock()
    session = make_session(
        {
            CLOUDFLARE_TRACE_V4: ["ip=1.2.3.4\n", requests.exceptions.ConnectionError("down")],
        }
    )
    resolver = make_resolver(session, clock)
    assert resolver.resolve() == "1.2.3.4"

    clock.advance(600)
    assert resolver.resolve() == "1.2.3.4"
    assert "Using cached IPv4 address" in caplog.text


def test_ipv4_failure_without_cache_propagates() -> None:
    session = make_session({})
    resolver = make_resolver(session)

    with pytest.raises(ResolutionError):
        resolver.resolve(RecordType.A)


# =============================================================================
# IPv6
# =============================================================================


def test_ipv6_from_cloudflare_trace() -> None:
    session = make_session({CLOUDFLARE_TRACE_V6: "ip=2001:db8::1\nts=1234567890\n"})
    resolver = make_resolver(session)

    assert resolver.resolve("AAAA") == "2001:db8::1"
    session.get.assert_called_once_with(CLOUDFLARE_TRACE_V6, timeout=5.0)


def test_ipv6_has_no_fallback_and_reports_unavailable() -> None:
    session = make_session(
        {
            CLOUDFLARE_TRACE_V6: requests.exceptions.ConnectionError("Network is unreachable"),
            IPIFY: '{"ip": "1.2.3.4"}',
            IFCONFIG: "1.2.3.4",
        }
    )
    resolver = make_resolver(session)

    with pytest.raises(IPv6UnavailableError):
        resolver.resolve(RecordType.AAAA)
    assert session.calls == [CLOUDFLARE_TRACE_V6]


def test_ipv6_failure_returns_cached_value() -> None:
    clock = FakeClock()
    session = make_session(
        {
            CLOUDFLARE_TRACE_V6: ["ip=2001:db8::1\n", requests.exceptions.ConnectionError("down")],
        }
    )
    resolver = make_resolver(session, clock)
    resolver.resolve(RecordType.AAAA)

    clock.advance(1000)
    assert resolver.resolve(RecordType.AAAA) == "2001:db8::1"


def test_families_are_cached_independently() -> None:
    session = make_session(
        {
            CLOUDFLARE_TRACE_V4: "ip=1.2.3.4\n",
            CLOUDFLARE_TRACE_V6: requests.exceptions.ConnectionError("no v6"),
        }
    )
    resolver = make_resolver(session)

    assert resolver.resolve(RecordType.A) == "1.2.3.4"
    with pytest.raises(IPv6UnavailableError):
        resolver.resolve(RecordType.AAAA)

    assert resolver.cached(RecordType.A) == "1.2.3.4"
    assert resolver.cached(RecordType.AAAA) is None
    # IPv4 is still served from cache.
    assert resolver.resolve(RecordType.A) == "1.2.3.4"
    assert session.calls.count(CLOUDFLARE_TRACE_V4) == 1


def test_resolve_rejects_non_address_types() -> None:
    resolver = make_resolver(make_session({}))

    with pytest.raises(ValueError):
        resolver.resolve(RecordType.CNAME)
