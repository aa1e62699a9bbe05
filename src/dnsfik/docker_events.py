"""Docker container discovery and lifecycle event stream."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

import docker
from docker.errors import DockerException, NotFound

from .labels import LabelParser
from .models import ContainerAction, ContainerEvent
from .reconciler import EntitySource

logger = logging.getLogger(__name__)

# Docker action -> normalized action
ACTIONS: Dict[str, ContainerAction] = {
    "create": ContainerAction.CREATED,
    "start": ContainerAction.STARTED,
    "stop": ContainerAction.STOPPED,
    "die": ContainerAction.STOPPED,
    "kill": ContainerAction.STOPPED,
    "destroy": ContainerAction.REMOVED,
}


def _container_name(container) -> str:
    return (container.name or container.id or "").lstrip("/")


class DockerEventSource(EntitySource):
    """Feeds container events carrying DNS labels to a callback."""

    def __init__(
        self,
        parser: LabelParser,
        *,
        socket_path: str = "/var/run/docker.sock",
        client: Optional[docker.DockerClient] = None,
    ):
        self.parser = parser
        self._client = client or docker.DockerClient(base_url=f"unix://{socket_path}")
        self._stream = None
        self._closed = threading.Event()

    def ping(self) -> bool:
        try:
            self._client.ping()
            return True
        except DockerException as e:
            logger.error(f"Cannot reach the Docker daemon: {e}")
            return False

    def running_entities(self) -> List[Tuple[str, Dict[str, str]]]:
        entities = []
        for container in self._client.containers.list():
            labels = dict(container.labels or {})
            if self.parser.has_dns_labels(labels):
                entities.append((_container_name(container), labels))
        return entities

    def scan(self, callback: Callable[[ContainerEvent], None]) -> int:
        """Emit a ``started`` event for every running container with DNS labels."""
        entities = self.running_entities()
        for name, labels in entities:
            logger.debug(f"DNS labels found on container {name}")
            callback(ContainerEvent(entity_id=name, action=ContainerAction.STARTED, metadata=labels))
        logger.info(f"Scanned {len(entities)} container(s) with DNS labels")
        return len(entities)

    def listen(self, callback: Callable[[ContainerEvent], None]) -> None:
        """Block on the Docker event stream until ``close()`` is called."""
        self._stream = self._client.events(
            decode=True,
            filters={"type": "container", "event": list(ACTIONS)},
        )
        logger.info("Docker event monitoring started")
        try:
            for raw in self._stream:
                if self._closed.is_set():
                    break
                try:
                    event = self.to_event(raw)
                except DockerException as e:
                    logger.error(f"Error handling container event: {e}")
                    continue
                if event is not None:
                    callback(event)
        finally:
            self._stream = None

    def to_event(self, raw: Dict) -> Optional[ContainerEvent]:
        """Translate a decoded Docker event into a ContainerEvent (or None to ignore it)."""
        if raw.get("Type") != "container":
            return None
        action = ACTIONS.get(str(raw.get("Action") or raw.get("status") or ""))
        if action is None:
            return None

        actor = raw.get("Actor") or {}
        container_id = actor.get("ID") or raw.get("id") or ""
        attributes = actor.get("Attributes") or {}

        if action.is_gone:
            name = attributes.get("name") or container_id
            logger.debug(f"Container {name} {action.value}")
            return ContainerEvent(entity_id=name, action=action)

        try:
            container = self._client.containers.get(container_id)
        except NotFound:
            logger.debug(f"Container {container_id[:12]} not found, likely already removed")
            return None

        labels = dict(container.labels or {})
        name = _container_name(container)
        if not self.parser.has_dns_labels(labels):
            logger.debug(f"Container {name} has no DNS labels")
            return None
        return ContainerEvent(entity_id=name, action=action, metadata=labels)

    def close(self) -> None:
        self._closed.set()
        stream = self._stream
        if stream is not None:
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Error closing Docker event stream: {e}")
