#!/usr/bin/env python3
"""dnsfik - Cloudflare DNS records from Docker labels

Watches Docker container events and keeps Cloudflare DNS records in line with
the labels declared on each container. Records without explicit content point
at this host's public IP and follow it when it changes.

Container labels:

    dns.cloudflare.hostname       Record name (required unless inferred from Traefik)
    dns.cloudflare.type           A, AAAA, CNAME, TXT or MX (default: A)
    dns.cloudflare.content        Record content; omitted or "public_ip" = public IP
    dns.cloudflare.ttl            TTL in seconds (1 = automatic)
    dns.cloudflare.proxied        Route through Cloudflare's proxy (A default: true)

    Several records per container use a group suffix, in either order:
        dns.cloudflare.hostname.v6: app.example.com
        dns.cloudflare.v6.type: AAAA

    With USE_TRAEFIK_LABELS=true, containers with traefik.enable=true and no
    dns.cloudflare.hostname get one record per Host(`...`) in their router rules.

Environment variables:

    Cloudflare:
        CLOUDFLARE_TOKEN          API token with DNS edit permission (required)
        CLOUDFLARE_ZONE_ID        Zone to manage (required)
        CLOUDFLARE_API_URL        API base URL (default: https://api.cloudflare.com/client/v4)

    Docker:
        DOCKER_SOCKET             Docker socket path (default: /var/run/docker.sock)

    Record defaults:
        DNS_LABEL_PREFIX          Label prefix (default: dns.cloudflare.)
        DNS_DEFAULT_TYPE          Record type for Traefik-inferred records (default: A)
        DNS_DEFAULT_PROXIED       Default proxied flag (default: true)
        DNS_DEFAULT_TTL           Default TTL (default: 1, automatic)
        USE_TRAEFIK_LABELS        Infer hostnames from Traefik rules (default: false)

    Runtime:
        TASK_PROCESSING_INTERVAL  Seconds between task queue passes (default: 5)
        TASK_MAX_ATTEMPTS         Attempts before a task is dropped (default: 3)
        TASK_RETRY_DELAY          Seconds before a failed task is retried (default: 5)
        TASK_RETRY_BACKOFF        "fixed" or "exponential" (default: fixed)
        IP_CACHE_SECONDS          Public IP cache lifetime (default: 300)
        IP_CHECK_INTERVAL         Seconds between public IP checks (default: 300)
        HTTP_TIMEOUT_SECONDS      Timeout for outgoing HTTP calls (default: 5)
        LOG_LEVEL                 DEBUG, INFO, WARNING, ERROR (default: INFO)
        DNSFIK_CONFIG_PATH        Optional YAML file with the same settings in
                                  lowercase (default: /config/dnsfik.yaml)
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from typing import Callable

from docker.errors import DockerException

from .cloudflare import CloudflareDNSProvider
from .config import Settings, load_settings, validate_settings
from .docker_events import DockerEventSource
from .errors import ConfigurationError
from .labels import LabelParser
from .public_ip import PublicIPResolver
from .reconciler import Reconciler
from .tasks import TaskQueue

logger = logging.getLogger("dnsfik")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def log_config_summary(settings: Settings) -> None:
    """Log the effective configuration, with the API token masked."""
    rows = [
        ("Cloudflare zone", settings.cloudflare_zone_id or "not set"),
        ("Cloudflare token", "********" if settings.cloudflare_token else "not set"),
        ("Docker socket", settings.docker_socket),
        ("DNS label prefix", settings.dns_label_prefix),
        ("Default type", settings.dns_default_type),
        ("Default proxied", settings.dns_default_proxied),
        ("Default TTL", settings.dns_default_ttl),
        ("Traefik labels", "enabled" if settings.use_traefik_labels else "disabled"),
        ("Task interval", f"{settings.task_processing_interval:g}s"),
        (
            "Task retries",
            f"{settings.task_max_attempts} attempts, {settings.task_retry_backoff} "
            f"delay {settings.task_retry_delay:g}s",
        ),
        ("IP check interval", f"{settings.ip_check_interval:g}s"),
        ("Log level", settings.log_level),
    ]
    width = max(len(name) for name, _ in rows)
    logger.info("dnsfik configuration:")
    for name, value in rows:
        logger.info(f"  {name.ljust(width)}  {value}")


def run_periodic(
    stop_event: threading.Event, interval: float, check: Callable[[], None], name: str
) -> None:
    """Call ``check`` every ``interval`` seconds; a failing cycle is logged, not fatal."""
    while not stop_event.wait(max(1.0, interval)):
        try:
            check()
        except Exception as e:
            logger.error(f"{name} failed: {e}", exc_info=True)


def main():
    """Main entry point."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging("INFO")
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    logger.info("Starting dnsfik")

    errors = validate_settings(settings)
    if errors:
        for error in errors:
            logger.error(error)
        logger.error("Configuration validation failed")
        sys.exit(1)

    log_config_summary(settings)

    provider = CloudflareDNSProvider(
        settings.cloudflare_token,
        settings.cloudflare_zone_id,
        api_url=settings.cloudflare_api_url,
        timeout_seconds=settings.http_timeout_seconds,
    )
    if not provider.test_connection():
        logger.error(f"Cannot connect to {provider.name}. Exiting.")
        sys.exit(1)

    parser = LabelParser(
        prefix=settings.dns_label_prefix,
        default_type=settings.dns_default_type,
        default_proxied=settings.dns_default_proxied,
        default_ttl=settings.dns_default_ttl,
        use_traefik_labels=settings.use_traefik_labels,
    )
    resolver = PublicIPResolver(
        cache_seconds=settings.ip_cache_seconds,
        timeout_seconds=settings.http_timeout_seconds,
    )
    queue = TaskQueue(
        provider,
        max_attempts=settings.task_max_attempts,
        retry_delay=settings.task_retry_delay,
        backoff=settings.task_retry_backoff,
    )
    try:
        source = DockerEventSource(parser, socket_path=settings.docker_socket)
    except DockerException as e:
        logger.error(f"Cannot reach the Docker daemon at {settings.docker_socket}: {e}")
        sys.exit(1)
    if not source.ping():
        sys.exit(1)

    reconciler = Reconciler(
        parser=parser,
        resolver=resolver,
        provider=provider,
        queue=queue,
        entity_source=source,
    )

    stop_event = threading.Event()

    def _shutdown(signum, _frame):
        logger.info(f"Received {signal.Signals(signum).name}, shutting down gracefully...")
        stop_event.set()
        source.close()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    worker = threading.Thread(
        target=queue.run,
        args=(stop_event, settings.task_processing_interval),
        name="task-worker",
    )
    ip_checker = threading.Thread(
        target=run_periodic,
        args=(stop_event, settings.ip_check_interval, reconciler.on_periodic_address_check, "Public IP check"),
        name="ip-check",
        daemon=True,
    )

    try:
        worker.start()
        ip_checker.start()

        source.scan(reconciler.handle_event)
        while not stop_event.is_set():
            source.listen(reconciler.handle_event)
            if not stop_event.is_set():
                logger.warning("Docker event stream ended, reconnecting")
                stop_event.wait(5)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        stop_event.set()
        sys.exit(1)
    finally:
        stop_event.set()
        source.close()
        if worker.is_alive():
            worker.join()
        logger.info(f"Stopped with {len(queue)} task(s) still queued")


if __name__ == "__main__":
    main()
