"""Data classes and enums passed between the dnsfik components."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

# Cloudflare treats a TTL of 1 as "automatic".
AUTO_TTL = 1

# Label value that asks for the host's public address, same as leaving content out.
PUBLIC_IP = "public_ip"

DEFAULT_MAX_ATTEMPTS = 3


# =============================================================================
# Enums
# =============================================================================


class RecordType(str, Enum):
    """DNS record types that can be declared through labels."""

    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    TXT = "TXT"
    MX = "MX"

    @property
    def is_address(self) -> bool:
        return self in (RecordType.A, RecordType.AAAA)


class TaskKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ContainerAction(str, Enum):
    """Normalized container lifecycle actions."""

    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"
    REMOVED = "removed"

    @property
    def is_gone(self) -> bool:
        return self in (ContainerAction.STOPPED, ContainerAction.REMOVED)


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class DesiredRecord:
    """DNS record intent derived from a container's labels.

    ``content`` is None when the record should point at the host's public
    address. ``ttl`` and ``proxied`` are None when no value (not even a
    default) applies to the record.
    """

    hostname: str
    type: RecordType
    content: Optional[str] = None
    ttl: Optional[int] = None
    proxied: Optional[bool] = None

    @property
    def key(self) -> tuple[str, RecordType]:
        return (self.hostname, self.type)

    @property
    def uses_public_ip(self) -> bool:
        return self.content is None


@dataclass(frozen=True)
class DNSRecord:
    """Record body sent to the DNS provider on create/update."""

    name: str
    type: str
    content: str
    ttl: int = AUTO_TTL
    proxied: Optional[bool] = None


@dataclass(frozen=True)
class ObservedRecord:
    """Record as currently stored at the DNS provider."""

    id: str
    name: str
    type: str
    content: str
    ttl: int
    proxied: Optional[bool] = None


# =============================================================================
# Tasks
# =============================================================================


@dataclass(frozen=True)
class TaskPayload:
    hostname: str
    type: str
    content: str
    ttl: int
    proxied: Optional[bool]
    originating_entity: str
    record_id: Optional[str] = None

    def to_record(self) -> DNSRecord:
        return DNSRecord(
            name=self.hostname,
            type=self.type,
            content=self.content,
            ttl=self.ttl,
            proxied=self.proxied,
        )


@dataclass
class ReconciliationTask:
    """A pending create/update against the DNS provider."""

    kind: TaskKind
    payload: TaskPayload
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    not_before: float = 0.0
    last_error: str = ""

    def __post_init__(self) -> None:
        if self.kind == TaskKind.UPDATE and not self.payload.record_id:
            raise ValueError("UPDATE tasks require the existing record id")

    def describe(self) -> str:
        p = self.payload
        return f"{self.kind.value} {p.type} {p.hostname} -> {p.content} (entity: {p.originating_entity})"


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class ContainerEvent:
    """A container lifecycle notification with the container's labels."""

    entity_id: str
    action: ContainerAction
    metadata: Dict[str, str] = field(default_factory=dict)
