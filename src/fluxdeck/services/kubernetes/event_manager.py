"""Flux event feed.

Lists core v1 Events about Flux objects, renders their last-seen text the
way ``kubectl`` does, and keeps a de-duplicated feed with dismissible
warning toasts.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from fluxdeck.integrations.kubernetes.models.events import FluxEvent
from fluxdeck.services.kubernetes.base import K8sBaseManager

FLUX_EVENT_KINDS = frozenset(
    kind.lower()
    for kind in (
        "Kustomization",
        "HelmRelease",
        "HelmChart",
        "GitRepository",
        "OCIRepository",
        "Bucket",
        "HelmRepository",
        "Alert",
        "Provider",
        "Receiver",
        "ImagePolicy",
        "ImageRepository",
        "ImageUpdateAutomation",
        "Terraform",
    )
)

UNKNOWN = "<unknown>"
MAX_TOASTS = 3
DISMISS_TTL = timedelta(hours=24)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def is_flux_kind(kind: str | None) -> bool:
    return kind is not None and kind.lower() in FLUX_EVENT_KINDS


# =============================================================================
# Durations
# =============================================================================


def human_duration(delta: timedelta) -> str:
    """Approximate a duration the way Kubernetes prints ages.

    Skew of up to a second into the future reads as ``0s``; anything further
    is ``<invalid>``.
    """
    seconds = int(delta.total_seconds())
    if seconds < -1:
        return "<invalid>"
    if seconds < 0:
        return "0s"
    if seconds < 60 * 2:
        return f"{seconds}s"

    minutes = seconds // 60
    if minutes < 10:
        s = seconds % 60
        return f"{minutes}m" if s == 0 else f"{minutes}m{s}s"
    if minutes < 60 * 3:
        return f"{minutes}m"

    hours = minutes // 60
    if hours < 8:
        m = minutes % 60
        return f"{hours}h" if m == 0 else f"{hours}h{m}m"
    if hours < 48:
        return f"{hours}h"
    if hours < 24 * 8:
        h = hours % 24
        return f"{hours // 24}d" if h == 0 else f"{hours // 24}d{h}h"
    if hours < 24 * 365 * 2:
        return f"{hours // 24}d"
    if hours < 24 * 365 * 8:
        dy = (hours // 24) % 365
        years = hours // 24 // 365
        return f"{years}y" if dy == 0 else f"{years}y{dy}d"
    return f"{hours // 24 // 365}y"


def since(timestamp: datetime | None, now: datetime) -> str:
    """Human duration from ``timestamp`` to ``now``, or ``<unknown>``."""
    if timestamp is None:
        return UNKNOWN
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return human_duration(now - timestamp)


def _ago(text: str) -> str:
    return text if text == UNKNOWN else f"{text} ago"


def last_seen(event: FluxEvent, now: datetime | None = None) -> str:
    """Last-seen column text.

    Recurring events read ``"5m ago (x3 over 1h)"``; single events read
    ``"1h ago"``.
    """
    now = now or datetime.now(UTC)
    first_seen = since(event.first_seen, now)
    if event.series is not None:
        last = since(event.series.last_observed_time, now)
        return f"{_ago(last)} (x{event.series.count} over {first_seen})"
    if event.count > 1:
        last = since(event.last_timestamp, now)
        return f"{_ago(last)} (x{event.count} over {first_seen})"
    return _ago(first_seen)


def sort_newest_first(events: Iterable[FluxEvent]) -> list[FluxEvent]:
    return sorted(events, key=lambda e: _aware(e.sort_time), reverse=True)


def _aware(ts: datetime | None) -> datetime:
    if ts is None:
        return _EPOCH
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


# =============================================================================
# Manager
# =============================================================================


class EventManager(K8sBaseManager):
    """Reads Kubernetes Events about Flux objects."""

    _entity_name = "event"

    def list_flux_events(self, namespace: str | None = None) -> list[FluxEvent]:
        """Flux events, newest first.

        Args:
            namespace: Restrict to one namespace; None lists all namespaces.
        """
        self._log.debug("listing_flux_events", namespace=namespace or "*")
        core = self._client.core_v1

        def call() -> Any:
            if namespace:
                return core.list_namespaced_event(namespace=namespace)
            return core.list_event_for_all_namespaces()

        result = self._api_call(call, "Event", None, namespace)
        events = [
            FluxEvent.from_k8s_object(item)
            for item in result.items
            if is_flux_kind(getattr(item.involved_object, "kind", None))
        ]
        self._log.debug("listed_flux_events", count=len(events))
        return sort_newest_first(events)


# =============================================================================
# Feed
# =============================================================================


class EventFeed:
    """De-duplicated event feed with warning toasts.

    Events with the same involved object, reason and message collapse into
    the most recent one.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        max_toasts: int = MAX_TOASTS,
        dismiss_ttl: timedelta = DISMISS_TTL,
    ) -> None:
        self._clock = clock
        self._max_toasts = max_toasts
        self._dismiss_ttl = dismiss_ttl
        self._lock = threading.Lock()
        self._events: list[FluxEvent] = []
        self._dismissed: dict[tuple[str, str, str, str, str], datetime] = {}

    def update(self, events: Iterable[FluxEvent]) -> None:
        """Merge a batch of events into the feed."""
        with self._lock:
            latest: dict[tuple[str, str, str, str, str], FluxEvent] = {}
            for event in sort_newest_first([*self._events, *events]):
                latest.setdefault(event.identity(), event)
            self._events = list(latest.values())

    def events(self) -> list[FluxEvent]:
        with self._lock:
            return list(self._events)

    def for_object(self, kind: str, namespace: str, name: str) -> list[FluxEvent]:
        """Events about one object, newest first."""
        with self._lock:
            return [
                e
                for e in self._events
                if e.kind.lower() == kind.lower() and e.namespace == namespace and e.name == name
            ]

    def dismiss(self, event: FluxEvent) -> None:
        with self._lock:
            self._dismissed[event.identity()] = self._clock()

    def toasts(self, now: datetime | None = None) -> list[FluxEvent]:
        """Newest undismissed warnings, at most ``max_toasts``."""
        now = now or self._clock()
        with self._lock:
            self._dismissed = {
                key: at for key, at in self._dismissed.items() if now - at < self._dismiss_ttl
            }
            warnings = [
                e
                for e in self._events
                if e.type == "Warning" and e.identity() not in self._dismissed
            ]
            return warnings[: self._max_toasts]
