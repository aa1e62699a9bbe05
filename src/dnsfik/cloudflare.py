"""DNS provider interface and the Cloudflare implementation."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .errors import DNSProviderAuthError, DNSProviderError
from .models import DNSRecord, ObservedRecord

logger = logging.getLogger(__name__)

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"


class DNSProvider(ABC):
    """Abstract base class for DNS providers.

    Records are identified by (name, type). Every method raises
    DNSProviderError on failure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the DNS provider."""
        pass

    @abstractmethod
    def get_record(self, name: str, record_type: str) -> Optional[ObservedRecord]:
        """Return the record with this name and type, or None."""
        pass

    @abstractmethod
    def create_record(self, record: DNSRecord) -> str:
        """Create a record and return its provider id."""
        pass

    @abstractmethod
    def update_record(self, record_id: str, record: DNSRecord) -> None:
        """Overwrite an existing record."""
        pass


class CloudflareDNSProvider(DNSProvider):
    """Cloudflare v4 API DNS provider for a single zone."""

    def __init__(
        self,
        token: str,
        zone_id: str,
        *,
        api_url: str = CLOUDFLARE_API_URL,
        timeout_seconds: float = 5.0,
    ):
        self._zone_id = zone_id
        self._url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()
        self._session.headers.update(
            {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        )

    @property
    def name(self) -> str:
        return "Cloudflare"

    @property
    def _records_url(self) -> str:
        return f"{self._url}/zones/{self._zone_id}/dns_records"

    def test_connection(self) -> bool:
        try:
            self._request("GET", f"{self._url}/zones/{self._zone_id}")
            logger.info(f"{self.name} connection successful")
            return True
        except DNSProviderError as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def get_record(self, name: str, record_type: str) -> Optional[ObservedRecord]:
        result = self._request(
            "GET", self._records_url, params={"name": name, "type": record_type}
        )
        if not isinstance(result, list) or not result:
            return None
        if len(result) > 1:
            logger.warning(f"Found {len(result)} {record_type} records for {name}, using the first")

        r = result[0]
        return ObservedRecord(
            id=str(r.get("id", "")),
            name=str(r.get("name", name)),
            type=str(r.get("type", record_type)),
            content=str(r.get("content", "")),
            ttl=int(r.get("ttl") or 1),
            proxied=r.get("proxied"),
        )

    def create_record(self, record: DNSRecord) -> str:
        result = self._request("POST", self._records_url, json=self._body(record))
        record_id = str(result.get("id", "")) if isinstance(result, dict) else ""
        logger.info(f"Created DNS record: {record.type} {record.name} -> {record.content}")
        return record_id

    def update_record(self, record_id: str, record: DNSRecord) -> None:
        self._request("PUT", f"{self._records_url}/{record_id}", json=self._body(record))
        logger.info(f"Updated DNS record: {record.type} {record.name} -> {record.content}")

    @staticmethod
    def _body(record: DNSRecord) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": record.type,
            "name": record.name,
            "content": record.content,
            "ttl": record.ttl,
        }
        if record.proxied is not None:
            body["proxied"] = record.proxied
        return body

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and return the ``result`` member of the API envelope."""
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise DNSProviderError(f"{method} {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise DNSProviderAuthError(
                f"{self.name} rejected the API token ({response.status_code})"
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise DNSProviderError(
                f"{method} {url} returned invalid JSON ({response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise DNSProviderError(f"{method} {url} returned an unexpected payload")

        if response.status_code >= 400 or not data.get("success", False):
            errors = data.get("errors") or []
            messages = "; ".join(
                str(err.get("message", err)) if isinstance(err, dict) else str(err)
                for err in errors
            )
            raise DNSProviderError(
                f"{method} {url} failed ({response.status_code}): {messages or 'unknown error'}"
            )

        return data.get("result")
