"""Structured sync events and StatsD metrics.

Events are single-line JSON log records tagged with the service and component
name. Metrics go to a StatsD agent over UDP when ``observability.statsd_host``
is configured and are silently dropped otherwise.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
from datetime import date, datetime, timezone
from typing import Any, Mapping, Protocol

from plotcrm.settings import Settings, get_settings

_LOGGER = logging.getLogger("plotcrm.events")
_CLIENT_LOCK = threading.Lock()
_STATSD_CLIENT: "StatsdClient | None" = None


class MetricsSink(Protocol):
    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None: ...

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None: ...


class StatsdClient:
    """Fire-and-forget StatsD client with DogStatsD-style tags."""

    def __init__(self, host: str, port: int, prefix: str = "") -> None:
        self.prefix = prefix
        self._address = (host, port)
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        self._send(metric, value, "c", tags)

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        self._send(metric, value_ms, "ms", tags)

    def format_line(self, metric: str, value: float, kind: str, tags: Mapping[str, str] | None = None) -> str:
        name = f"{self.prefix}.{metric}" if self.prefix else metric
        line = f"{name}:{_compact_number(value)}|{kind}"
        if tags:
            line += "|#" + ",".join(f"{key}:{tags[key]}" for key in sorted(tags))
        return line

    def _send(self, metric: str, value: float, kind: str, tags: Mapping[str, str] | None) -> None:
        try:
            self._socket.sendto(self.format_line(metric, value, kind, tags).encode("utf-8"), self._address)
        except OSError:
            _LOGGER.debug("Dropped StatsD metric %s", metric, exc_info=True)


class Observability:
    """Per-component handle for sync events and metrics."""

    def __init__(
        self,
        *,
        settings: Settings,
        component: str | None = None,
        metrics_backend: MetricsSink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.component = component or "core"
        self._service = settings.observability.service_name
        self._json = settings.observability.structured_logging
        self._metrics = metrics_backend
        self._logger = logger or _LOGGER

    def emit_event(self, event: str, **fields: Any) -> None:
        """Log ``event`` with ``fields``; JSON when structured logging is on."""

        record = {
            "event": event,
            "service": self._service,
            "component": self.component,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **{str(key): _jsonable(value) for key, value in fields.items()},
        }
        if self._json:
            self._logger.info(json.dumps(record, ensure_ascii=False))
        else:
            self._logger.info("%s %s", event, record)

    def increment(self, metric: str, *, value: float = 1.0, tags: Mapping[str, str] | None = None) -> None:
        if self._metrics is not None:
            self._metrics.increment(metric, value=value, tags=_clean_tags(tags))

    def record_timing(self, metric: str, value_ms: float, *, tags: Mapping[str, str] | None = None) -> None:
        if self._metrics is not None:
            self._metrics.record_timing(metric, value_ms=value_ms, tags=_clean_tags(tags))


def get_observability(*, component: str | None = None, settings: Settings | None = None) -> Observability:
    """Return an :class:`Observability` sharing the process-wide StatsD client."""

    resolved = settings or get_settings()
    return Observability(settings=resolved, component=component, metrics_backend=_statsd_client(resolved))


def reset_observability_cache() -> None:
    """Forget the shared StatsD client so the next call re-reads settings."""

    global _STATSD_CLIENT
    with _CLIENT_LOCK:
        _STATSD_CLIENT = None


def _statsd_client(settings: Settings) -> StatsdClient | None:
    global _STATSD_CLIENT
    config = settings.observability
    if not config.statsd_host:
        return None
    with _CLIENT_LOCK:
        if _STATSD_CLIENT is None:
            _STATSD_CLIENT = StatsdClient(config.statsd_host, config.statsd_port, config.statsd_prefix)
        return _STATSD_CLIENT


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(item) for item in value]
    return str(value)


def _clean_tags(tags: Mapping[str, Any] | None) -> dict[str, str] | None:
    cleaned = {str(key): str(value) for key, value in (tags or {}).items() if value is not None}
    return cleaned or None


def _compact_number(value: float) -> str:
    # 250.0 -> "250", 12.5 -> "12.5"
    return f"{value:.6f}".rstrip("0").rstrip(".") or "0"


__all__ = ["MetricsSink", "Observability", "StatsdClient", "get_observability", "reset_observability_cache"]
