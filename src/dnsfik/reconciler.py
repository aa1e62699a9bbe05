"""Reconciles container DNS labels against the records stored at the provider."""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .cloudflare import DNSProvider
from .errors import DNSProviderError, ResolutionError
from .labels import LabelParser
from .models import (
    AUTO_TTL,
    ContainerEvent,
    DesiredRecord,
    ObservedRecord,
    ReconciliationTask,
    RecordType,
    TaskKind,
    TaskPayload,
)
from .public_ip import PublicIPResolver
from .tasks import TaskQueue

logger = logging.getLogger(__name__)


def _same_content(record_type: RecordType, observed: str, desired: str) -> bool:
    """Compare record content, treating equivalent IP spellings as equal."""
    if record_type.is_address:
        try:
            return ipaddress.ip_address(observed.strip()) == ipaddress.ip_address(desired.strip())
        except ValueError:
            pass
    return observed == desired


class EntitySource(ABC):
    """Something that can list the running containers and their labels."""

    @abstractmethod
    def running_entities(self) -> List[Tuple[str, Dict[str, str]]]:
        """Return ``(entity_id, labels)`` for every running container."""
        pass


class Reconciler:
    """Turns container labels into create/update tasks for the DNS provider.

    The reconciler never talks to the provider's write API itself; it reads
    the current record, decides whether anything must change, and hands the
    mutation to the TaskQueue.
    """

    def __init__(
        self,
        *,
        parser: LabelParser,
        resolver: PublicIPResolver,
        provider: DNSProvider,
        queue: TaskQueue,
        entity_source: Optional[EntitySource] = None,
    ):
        self.parser = parser
        self.resolver = resolver
        self.provider = provider
        self.queue = queue
        self.entity_source = entity_source
        self._last_known: Dict[RecordType, Optional[str]] = {
            RecordType.A: None,
            RecordType.AAAA: None,
        }
        self._recheck_pending: Dict[RecordType, bool] = {
            RecordType.A: False,
            RecordType.AAAA: False,
        }

    # -------------------------------------------------------------------------
    # Entity events
    # -------------------------------------------------------------------------

    def handle_event(self, event: ContainerEvent) -> None:
        """Entry point for the event source. Never raises."""
        if event.action.is_gone:
            # Records are left in place when a container goes away.
            logger.debug(f"Container {event.entity_id} {event.action.value}, nothing to do")
            return

        try:
            self.on_entity_event(event.entity_id, event.metadata)
        except Exception as e:
            logger.error(
                f"Failed to reconcile DNS for {event.entity_id} ({event.action.value}): {e} "
                f"labels={event.metadata}",
                exc_info=not isinstance(e, (ResolutionError, DNSProviderError)),
            )

    def on_entity_event(self, entity_id: str, metadata: Dict[str, str]) -> List[ReconciliationTask]:
        """Reconcile one container and return the tasks that were queued.

        Raises ResolutionError when an A record needs the public IPv4 and it
        cannot be determined; nothing is queued in that case.
        """
        desired = self.parser.parse(entity_id, metadata)
        if not desired:
            logger.debug(f"No DNS records declared by {entity_id}")
            return []

        resolved: List[Tuple[DesiredRecord, str]] = []
        for record in desired:
            if not record.uses_public_ip:
                resolved.append((record, record.content or ""))
                continue
            try:
                address = self.resolver.resolve(record.type)
            except ResolutionError as e:
                if record.type == RecordType.AAAA:
                    logger.warning(
                        f"Skipping AAAA record {record.hostname} for {entity_id}: {e}"
                    )
                    continue
                raise
            resolved.append((record, address))

        tasks, _ = self._reconcile(entity_id, resolved)
        return tasks

    def _reconcile(
        self, entity_id: str, resolved: List[Tuple[DesiredRecord, str]]
    ) -> Tuple[List[ReconciliationTask], int]:
        """Enqueue the tasks for ``resolved``. Returns them with the number of unreadable records."""
        tasks: List[ReconciliationTask] = []
        unread = 0
        for record, content in resolved:
            try:
                observed = self.provider.get_record(record.hostname, record.type.value)
            except DNSProviderError as e:
                logger.error(
                    f"Could not read {record.type.value} {record.hostname} for {entity_id}: {e}"
                )
                unread += 1
                continue

            task = self.diff(entity_id, record, content, observed)
            if task is not None:
                tasks.append(task)

        for task in tasks:
            self.queue.enqueue(task)
        return tasks, unread

    def diff(
        self,
        entity_id: str,
        record: DesiredRecord,
        content: str,
        observed: Optional[ObservedRecord],
    ) -> Optional[ReconciliationTask]:
        """Build the task that moves ``observed`` to ``record``, or None if they match."""
        ttl = record.ttl if record.ttl is not None else AUTO_TTL
        payload = TaskPayload(
            hostname=record.hostname,
            type=record.type.value,
            content=content,
            ttl=ttl,
            proxied=record.proxied,
            originating_entity=entity_id,
            record_id=observed.id if observed else None,
        )

        if observed is None:
            logger.info(
                f"Creating DNS record {payload.type} {payload.hostname} -> {content} "
                f"(proxied={payload.proxied}, ttl={ttl}) for {entity_id}"
            )
            return ReconciliationTask(kind=TaskKind.CREATE, payload=payload)

        changes = []
        if not _same_content(record.type, observed.content, content):
            changes.append(f"content {observed.content} -> {content}")
        if observed.ttl != ttl:
            changes.append(f"ttl {observed.ttl} -> {ttl}")
        if record.proxied is not None and observed.proxied != record.proxied:
            changes.append(f"proxied {observed.proxied} -> {record.proxied}")

        if not changes:
            logger.debug(f"DNS record {payload.type} {payload.hostname} already up to date")
            return None

        logger.info(
            f"Updating DNS record {payload.type} {payload.hostname} for {entity_id}: "
            f"{', '.join(changes)}"
        )
        return ReconciliationTask(kind=TaskKind.UPDATE, payload=payload)

    # -------------------------------------------------------------------------
    # Public address changes
    # -------------------------------------------------------------------------

    def on_periodic_address_check(self) -> None:
        """Re-point public-IP records across all containers when the address moved.

        A failure to resolve IPv4 propagates; IPv6 failures are logged only.
        """
        self._check_family(RecordType.A)

        try:
            self._check_family(RecordType.AAAA)
        except ResolutionError as e:
            logger.info(f"IPv6 address check skipped: {e}")

    def _check_family(self, family: RecordType) -> None:
        # Before the first check, compare against what entity events already used.
        previous = self._last_known[family] or self.resolver.cached(family)
        current = self.resolver.resolve(family, force=True)
        self._last_known[family] = current

        if previous is None:
            logger.debug(f"Public {family.value} address baseline: {current}")
            return
        if previous != current:
            logger.info(f"Public {family.value} address changed {previous} -> {current}, re-checking containers")
        elif self._recheck_pending[family]:
            logger.info(f"Retrying incomplete {family.value} re-check for {current}")
        else:
            logger.debug(f"Public {family.value} address unchanged: {current}")
            return

        self.recheck_fleet(family, current)

    def recheck_fleet(self, family: RecordType, address: str) -> int:
        """Reconcile every public-IP record of ``family`` on running containers.

        Returns the number of tasks queued. Until a pass reads every container
        and record without error, the next periodic check repeats it.
        """
        if self.entity_source is None:
            logger.warning("No container source configured, cannot re-check records")
            return 0

        self._recheck_pending[family] = True
        queued = 0
        clean = True
        for entity_id, metadata in self.entity_source.running_entities():
            try:
                records = [
                    r
                    for r in self.parser.parse(entity_id, metadata)
                    if r.type == family and r.uses_public_ip
                ]
                if records:
                    tasks, unread = self._reconcile(entity_id, [(r, address) for r in records])
                    queued += len(tasks)
                    clean = clean and unread == 0
            except Exception as e:
                clean = False
                logger.error(f"Re-check failed for {entity_id}: {e} labels={metadata}", exc_info=True)

        self._recheck_pending[family] = not clean
        if clean:
            logger.info(f"Address re-check queued {queued} task(s)")
        else:
            logger.warning(f"Address re-check queued {queued} task(s), incomplete; retrying next cycle")
        return queued
