"""Public IP discovery with per-family caching and IPv4 cross-checking."""

from __future__ import annotations

import ipaddress
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import requests

from .errors import AddressDisagreementError, IPv6UnavailableError, ResolutionError
from .models import RecordType

logger = logging.getLogger(__name__)

CLOUDFLARE_TRACE_V4 = "https://1.1.1.1/cdn-cgi/trace"
CLOUDFLARE_TRACE_V6 = "https://[2606:4700:4700::1111]/cdn-cgi/trace"
FALLBACK_V4_SOURCES = ("https://api.ipify.org?format=json", "https://ifconfig.me/ip")

DEFAULT_CACHE_SECONDS = 300.0
DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass
class CachedAddress:
    value: Optional[str] = None
    checked_at: float = 0.0


def parse_trace(body: str) -> str:
    """Extract the address from a Cloudflare ``/cdn-cgi/trace`` response.

    The body is ``key=value`` lines, e.g. ``ip=1.2.3.4\\nts=1700000000\\n``.
    """
    for line in (body or "").splitlines():
        if line.startswith("ip="):
            ip = line.split("=", 1)[1].strip()
            if ip:
                return ip
            break
    raise ResolutionError("No IP address in Cloudflare trace response")


def _check_address(value: str, version: int, source: str) -> str:
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        raise ResolutionError(f"Invalid IP address {value!r} from {source}") from None
    if address.version != version:
        raise ResolutionError(f"Expected an IPv{version} address from {source}, got {value}")
    return str(address)


class PublicIPResolver:
    """Resolve and cache this host's public IPv4/IPv6 addresses.

    IPv4 comes from Cloudflare's trace endpoint, falling back to two
    independent services queried in parallel that must agree. IPv6 has a
    single source. When every source fails, the last known address (even a
    stale one) is returned instead of raising.
    """

    def __init__(
        self,
        *,
        cache_seconds: float = DEFAULT_CACHE_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache_seconds = cache_seconds
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._clock = clock
        self._cache: Dict[RecordType, CachedAddress] = {
            RecordType.A: CachedAddress(),
            RecordType.AAAA: CachedAddress(),
        }

    def cached(self, record_type: Union[RecordType, str] = RecordType.A) -> Optional[str]:
        return self._cache[self._family(record_type)].value

    def resolve(self, record_type: Union[RecordType, str] = RecordType.A, *, force: bool = False) -> str:
        """Return the public address used for ``record_type`` (A or AAAA)."""
        family = self._family(record_type)
        entry = self._cache[family]

        if (
            not force
            and entry.value
            and self._clock() - entry.checked_at < self._cache_seconds
        ):
            return entry.value

        try:
            ip = self._fetch_ipv6() if family == RecordType.AAAA else self._fetch_ipv4()
        except ResolutionError as e:
            logger.error(f"Failed to fetch public {self._label(family)}: {e}")
            if entry.value:
                logger.warning(f"Using cached {self._label(family)} address {entry.value}")
                return entry.value
            raise

        if entry.value and entry.value != ip:
            logger.info(f"Public {self._label(family)} changed: {entry.value} -> {ip}")
        entry.value = ip
        entry.checked_at = self._clock()
        return ip

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def _fetch_ipv4(self) -> str:
        try:
            ip = _check_address(self._fetch_trace(CLOUDFLARE_TRACE_V4), 4, CLOUDFLARE_TRACE_V4)
            logger.debug(f"Fetched IPv4 via Cloudflare: {ip}")
            return ip
        except (requests.exceptions.RequestException, ResolutionError) as e:
            logger.warning(f"Failed to fetch IPv4 via Cloudflare, trying fallback providers: {e}")

        with ThreadPoolExecutor(max_workers=len(FALLBACK_V4_SOURCES)) as pool:
            futures = {url: pool.submit(self._fetch_plain, url) for url in FALLBACK_V4_SOURCES}
            answers: Dict[str, str] = {}
            for url, future in futures.items():
                try:
                    answers[url] = _check_address(future.result(), 4, url)
                except (requests.exceptions.RequestException, ResolutionError) as e:
                    raise ResolutionError(f"Fallback IPv4 source {url} failed: {e}") from e

        if len(set(answers.values())) != 1:
            raise AddressDisagreementError(answers)
        return next(iter(answers.values()))

    def _fetch_ipv6(self) -> str:
        try:
            traced = self._fetch_trace(CLOUDFLARE_TRACE_V6)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise IPv6UnavailableError(
                "IPv6 is not available from this host. AAAA records need IPv6 enabled "
                f"in the Docker daemon ({e})"
            ) from e
        except requests.exceptions.RequestException as e:
            raise ResolutionError(f"Cloudflare IPv6 trace request failed: {e}") from e

        ip = _check_address(traced, 6, CLOUDFLARE_TRACE_V6)
        logger.debug(f"Fetched IPv6 via Cloudflare: {ip}")
        return ip

    def _fetch_trace(self, url: str) -> str:
        """Return the address reported by a Cloudflare trace endpoint."""
        response = self._session.get(url, timeout=self._timeout)
        response.raise_for_status()
        if not response.text:
            raise ResolutionError("No response from Cloudflare trace endpoint")
        return parse_trace(response.text)

    def _fetch_plain(self, url: str) -> str:
        """Fetch an address from a service answering either JSON ``{"ip": ...}`` or plain text."""
        response = self._session.get(url, timeout=self._timeout)
        response.raise_for_status()
        text = (response.text or "").strip()
        if text.startswith("{"):
            try:
                return str(json.loads(text)["ip"]).strip()
            except (json.JSONDecodeError, KeyError) as e:
                raise ResolutionError(f"Unexpected response from {url}: {text[:80]}") from e
        return text

    @staticmethod
    def _family(record_type: Union[RecordType, str]) -> RecordType:
        family = RecordType(record_type)
        if not family.is_address:
            raise ValueError(f"No public address for record type {family.value}")
        return family

    @staticmethod
    def _label(family: RecordType) -> str:
        return "IPv6" if family == RecordType.AAAA else "IPv4"
