"""Container label parsing.

Turns a flat label map into the DNS records a container asks for. Two label
styles are understood:

Explicit labels under the prefix (default ``dns.cloudflare.``)::

    dns.cloudflare.hostname: app.example.com
    dns.cloudflare.type: A                     # shared default for every group
    dns.cloudflare.hostname.v6: app.example.com
    dns.cloudflare.v6.type: AAAA               # "group.property" also works

Traefik router rules, when Traefik inference is enabled::

    traefik.enable: "true"
    traefik.http.routers.app.rule: Host(`a.example.com`) || Host(`b.example.com`)

A two-segment key is read as ``property.group`` when its first segment is a
known property, otherwise as ``group.property``. A group literally named
``type`` or ``hostname`` therefore cannot be expressed.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Any, Dict, List, Optional

from .errors import LabelValidationError
from .models import AUTO_TTL, PUBLIC_IP, DesiredRecord, RecordType

logger = logging.getLogger(__name__)

DEFAULT_LABEL_PREFIX = "dns.cloudflare."
DEFAULT_GROUP = "default"
PROPERTIES = ("hostname", "type", "content", "ttl", "proxied")

TRAEFIK_ENABLE_LABEL = "traefik.enable"
TRAEFIK_ROUTER_PREFIX = "traefik.http.routers."

# Types that receive the configured ttl/proxied defaults outside Traefik inference.
_DEFAULTED_TYPES = {"A", "AAAA", "CNAME"}


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def is_valid_ipv6(value: str) -> bool:
    try:
        ipaddress.IPv6Address(value)
    except ValueError:
        return False
    return True


class LabelParser:
    """Convert container labels into validated DesiredRecords."""

    HOST_RULE_RE = re.compile(r"Host\([`\"\']([^`\"\']+)[`\"\']\)")

    def __init__(
        self,
        *,
        prefix: str = DEFAULT_LABEL_PREFIX,
        default_type: str = "A",
        default_proxied: bool = True,
        default_ttl: int = AUTO_TTL,
        use_traefik_labels: bool = False,
    ):
        self.prefix = prefix if prefix.endswith(".") else f"{prefix}."
        self.default_type = default_type.upper()
        self.default_proxied = default_proxied
        self.default_ttl = default_ttl
        self.use_traefik_labels = use_traefik_labels

    def has_dns_labels(self, labels: Dict[str, str]) -> bool:
        """Whether a container carries anything this parser would act on."""
        if any(key.startswith(self.prefix) for key in labels):
            return True
        return self.use_traefik_labels and _parse_bool(
            labels.get(TRAEFIK_ENABLE_LABEL), default=False
        )

    def parse(self, entity_name: str, labels: Dict[str, str]) -> List[DesiredRecord]:
        """Return the desired records declared by ``labels``.

        Malformed groups are logged and left out; this never raises for bad
        label content.
        """
        logger.debug(f"Parsing labels for {entity_name}: {labels}")

        records: List[DesiredRecord] = []
        if (
            self.use_traefik_labels
            and _parse_bool(labels.get(TRAEFIK_ENABLE_LABEL), default=False)
            and f"{self.prefix}hostname" not in labels
        ):
            records = self._from_traefik(entity_name, labels)

        if not records:
            records = self._from_dns_labels(entity_name, labels)

        return self._dedupe(entity_name, records)

    # -------------------------------------------------------------------------
    # Traefik inference
    # -------------------------------------------------------------------------

    def _router_rules(self, labels: Dict[str, str]) -> List[str]:
        return [
            value
            for key, value in labels.items()
            if key.startswith(TRAEFIK_ROUTER_PREFIX) and key.endswith(".rule")
        ]

    def _extract_hostnames(self, rule: str) -> List[str]:
        """Extract hostnames from a Traefik router rule, in order of appearance."""
        return list(dict.fromkeys(m.group(1) for m in self.HOST_RULE_RE.finditer(rule or "")))

    def _from_traefik(self, entity_name: str, labels: Dict[str, str]) -> List[DesiredRecord]:
        hostnames: List[str] = []
        for rule in self._router_rules(labels):
            for hostname in self._extract_hostnames(rule):
                if hostname not in hostnames:
                    hostnames.append(hostname)

        if hostnames:
            logger.debug(f"Traefik hosts for {entity_name}: {', '.join(hostnames)}")

        records = []
        for hostname in hostnames:
            group: Dict[str, str] = {
                "hostname": hostname,
                "type": self.default_type,
                "proxied": str(self.default_proxied).lower(),
                "ttl": str(self.default_ttl),
            }
            for prop in ("type", "content", "proxied"):
                override = labels.get(f"{self.prefix}{prop}")
                if override:
                    group[prop] = override

            record = self._build(entity_name, group, include_defaults=True)
            if record is not None:
                records.append(record)
        return records

    # -------------------------------------------------------------------------
    # Explicit dns.* labels
    # -------------------------------------------------------------------------

    def _group_labels(self, labels: Dict[str, str]) -> tuple[Dict[str, str], Dict[str, Dict[str, str]]]:
        """Split prefixed labels into shared defaults and per-group values."""
        shared: Dict[str, str] = {}
        groups: Dict[str, Dict[str, str]] = {}

        for key, value in labels.items():
            if not key.startswith(self.prefix):
                continue
            parts = key[len(self.prefix):].split(".")

            if len(parts) == 1:
                group, prop = DEFAULT_GROUP, parts[0]
                shared[prop] = value
            elif len(parts) == 2:
                if parts[0] in PROPERTIES:
                    prop, group = parts
                else:
                    group, prop = parts
            else:
                logger.debug(f"Ignoring label with unexpected layout: {key}")
                continue

            groups.setdefault(group, {})[prop] = value

        return shared, groups

    def _from_dns_labels(self, entity_name: str, labels: Dict[str, str]) -> List[DesiredRecord]:
        shared, groups = self._group_labels(labels)
        if not groups:
            return []

        if self.use_traefik_labels and "hostname" not in shared:
            rules = self._router_rules(labels)
            hosts = [h for rule in rules for h in self._extract_hostnames(rule)]
            if hosts:
                logger.debug(f"Using Traefik host {hosts[0]} as default hostname for {entity_name}")
                shared["hostname"] = hosts[0]
                groups.setdefault(DEFAULT_GROUP, {})["hostname"] = hosts[0]

        records = []
        for name, values in groups.items():
            merged = {**shared, **values}

            if name == DEFAULT_GROUP and not merged.get("hostname") and len(groups) > 1:
                logger.warning(
                    f"Unsuffixed DNS labels on {entity_name} have no hostname; "
                    "using them only as defaults for the named groups"
                )
                continue

            declared_type = (merged.get("type") or "").strip().upper()
            include_defaults = not declared_type or declared_type in _DEFAULTED_TYPES

            record = self._build(entity_name, merged, include_defaults=include_defaults)
            if record is not None:
                records.append(record)
        return records

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _build(
        self, entity_name: str, values: Dict[str, str], *, include_defaults: bool
    ) -> Optional[DesiredRecord]:
        try:
            return self._validate(entity_name, values, include_defaults)
        except LabelValidationError as e:
            logger.error(f"Dropping DNS record for {entity_name}: {e}")
            return None

    def _validate(
        self, entity_name: str, values: Dict[str, str], include_defaults: bool
    ) -> DesiredRecord:
        hostname = (values.get("hostname") or "").strip()
        if not hostname:
            raise LabelValidationError("missing required hostname")

        record_type = self._record_type(entity_name, values.get("type"))

        content: Optional[str] = values.get("content")
        if content is not None:
            content = content.strip()
        if not content or content == PUBLIC_IP:
            content = None

        if content is None and not record_type.is_address:
            raise LabelValidationError(f"{record_type.value} record {hostname} requires content")

        if record_type == RecordType.AAAA and content is not None and not is_valid_ipv6(content):
            raise LabelValidationError(f'invalid IPv6 address "{content}" for {hostname}')

        proxied: Optional[bool]
        if values.get("proxied") is not None:
            proxied = _parse_bool(values["proxied"], default=False)
        elif record_type == RecordType.A:
            proxied = True
        elif record_type == RecordType.AAAA:
            proxied = False
        elif include_defaults:
            proxied = self.default_proxied
        else:
            proxied = None

        ttl = self._ttl(entity_name, values.get("ttl"))
        if ttl is None and include_defaults:
            ttl = self.default_ttl

        return DesiredRecord(
            hostname=hostname,
            type=record_type,
            content=content,
            ttl=ttl,
            proxied=proxied,
        )

    def _record_type(self, entity_name: str, value: Optional[str]) -> RecordType:
        if not value:
            return RecordType.A
        try:
            return RecordType(value.strip().upper())
        except ValueError:
            logger.warning(f'Invalid DNS record type "{value}" for {entity_name}, using "A" instead')
            return RecordType.A

    def _ttl(self, entity_name: str, value: Optional[str]) -> Optional[int]:
        if value is None or not str(value).strip():
            return None
        try:
            ttl = int(str(value).strip())
        except ValueError:
            ttl = 0
        if ttl < 1:
            logger.warning(f'Invalid TTL value "{value}" for {entity_name}, using default')
            return None
        return ttl

    def _dedupe(self, entity_name: str, records: List[DesiredRecord]) -> List[DesiredRecord]:
        seen = set()
        unique = []
        for record in records:
            if record.key in seen:
                logger.warning(
                    f"Duplicate {record.type.value} record for {record.hostname} on {entity_name}; "
                    "keeping the first declaration"
                )
                continue
            seen.add(record.key)
            unique.append(record)
        return unique
