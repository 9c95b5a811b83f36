"""Live state store.

Keeps the ``Service`` view current under create/update/delete events from
independent watch streams. Records are copy-on-write: every handler builds
a new list of new records and swaps it in under a lock, so a snapshot taken
by a reader never changes underneath it.

Besides the published records the store indexes the latest Pods,
Deployments and Ingresses it has seen. A Service created after its Pods is
seeded from those indexes, so the final state does not depend on the order
the watch streams deliver in.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from typing import Any

import structlog

from fluxdeck.integrations.kubernetes.exceptions import MalformedEventError
from fluxdeck.integrations.kubernetes.models.networking import (
    IngressSummary,
    ServiceSummary,
)
from fluxdeck.integrations.kubernetes.models.services import Service
from fluxdeck.integrations.kubernetes.models.watch import (
    EventType,
    ResourceKind,
    WatchEvent,
)
from fluxdeck.integrations.kubernetes.models.workloads import (
    DeploymentSummary,
    PodSummary,
)
from fluxdeck.services.kubernetes.service_aggregator import (
    correlate,
    deployment_serves,
    pick_deployment,
    pod_serves,
)

logger = structlog.get_logger()

Subscriber = Callable[[list[Service]], None]

_PAYLOAD_TYPES: dict[ResourceKind, type] = {
    ResourceKind.SERVICE: ServiceSummary,
    ResourceKind.DEPLOYMENT: DeploymentSummary,
    ResourceKind.POD: PodSummary,
    ResourceKind.INGRESS: IngressSummary,
}


class LiveStateStore:
    """Copy-on-write store of ``Service`` records."""

    def __init__(self, services: list[Service] | None = None) -> None:
        self._lock = threading.Lock()
        self._services: list[Service] = []
        self._pods: dict[str, PodSummary] = {}
        self._deployments: dict[str, DeploymentSummary] = {}
        self._ingresses: dict[str, IngressSummary] = {}
        self._subscribers: list[Subscriber] = []
        self._log = logger.bind(entity="live_state")
        if services:
            self.replace_all(services)

    # =========================================================================
    # Reads
    # =========================================================================

    def snapshot(self) -> list[Service]:
        """Point-in-time list of records."""
        with self._lock:
            return list(self._services)

    def get(self, key: str) -> Service | None:
        with self._lock:
            return next((s for s in self._services if s.key == key), None)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with the new snapshot after every mutation.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # =========================================================================
    # Writes
    # =========================================================================

    def replace_all(self, services: list[Service]) -> None:
        """Wholesale resync from an aggregation result."""
        with self._lock:
            self._services = list(services)
            self._pods = {p.key: p for s in services for p in s.pods}
            self._deployments = {s.deployment.key: s.deployment for s in services if s.deployment}
            self._ingresses = {i.key: i for s in services for i in s.ingresses}
        self._log.debug("live_state_replaced", count=len(services))
        self._notify()

    def apply(self, event: WatchEvent) -> None:
        """Apply one watch event. Malformed events are logged and dropped."""
        try:
            self._dispatch(event)
        except MalformedEventError as e:
            self._log.warning(
                "dropped_malformed_event",
                resource=str(event.resource),
                type=str(event.type),
                key=event.key,
                error=str(e),
            )
            return
        self._notify()

    def _dispatch(self, event: WatchEvent) -> None:
        if event.type == EventType.DELETED:
            if not event.key:
                raise MalformedEventError("DELETED event without a key", payload=event)
            handler: Callable[[Any], None] = getattr(self, f"{event.resource}_deleted")
            handler(event.key)
            return

        expected = _PAYLOAD_TYPES[event.resource]
        if not isinstance(event.obj, expected):
            raise MalformedEventError(
                f"{event.type} {event.resource} event without a {expected.__name__} payload",
                payload=event,
            )
        handler = getattr(self, f"{event.resource}_{event.type.lower()}")
        handler(event.obj)

    def _notify(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
            snapshot = list(self._services)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                self._log.exception("live_state_subscriber_failed")

    # =========================================================================
    # Service handlers
    # =========================================================================

    def service_created(self, svc: ServiceSummary) -> None:
        with self._lock:
            if any(s.key == svc.key for s in self._services):
                return
            record = correlate(
                svc,
                self._deployments.values(),
                self._pods.values(),
                self._ingresses.values(),
            )
            self._services = [*self._services, record]

    def service_updated(self, svc: ServiceSummary) -> None:
        with self._lock:
            self._services = [
                s.model_copy(update={"svc": svc}) if s.key == svc.key else s
                for s in self._services
            ]

    def service_deleted(self, key: str) -> None:
        with self._lock:
            self._services = [s for s in self._services if s.key != key]

    # =========================================================================
    # Deployment handlers
    # =========================================================================

    def deployment_created(self, deployment: DeploymentSummary) -> None:
        with self._lock:
            self._deployments[deployment.key] = deployment
            self._services = [self._with_deployment(s, deployment) for s in self._services]

    deployment_updated = deployment_created

    def deployment_deleted(self, key: str) -> None:
        """Detach ``key``; the next Deployment the store knows that serves the
        Service takes its place, as a fresh aggregation would pick it."""
        with self._lock:
            self._deployments.pop(key, None)
            self._services = [
                s.model_copy(
                    update={"deployment": pick_deployment(self._deployments.values(), s.svc)}
                )
                if s.deployment is not None and s.deployment.key == key
                else s
                for s in self._services
            ]

    @staticmethod
    def _with_deployment(service: Service, deployment: DeploymentSummary) -> Service:
        if not deployment_serves(deployment, service.svc):
            return service
        current = service.deployment
        if current is None or current.key == deployment.key or deployment.name < current.name:
            return service.model_copy(update={"deployment": deployment})
        return service

    # =========================================================================
    # Pod handlers
    # =========================================================================

    def pod_created(self, pod: PodSummary) -> None:
        with self._lock:
            self._pods[pod.key] = pod
            self._services = [
                s.model_copy(update={"pods": [*s.pods, pod]})
                if pod_serves(pod, s.svc) and not s.has_pod(pod.key)
                else s
                for s in self._services
            ]

    def pod_updated(self, pod: PodSummary) -> None:
        with self._lock:
            self._pods[pod.key] = pod
            self._services = [
                s.model_copy(
                    update={"pods": [pod if p.key == pod.key else p for p in s.pods]}
                )
                if s.has_pod(pod.key)
                else s
                for s in self._services
            ]

    def pod_deleted(self, key: str) -> None:
        with self._lock:
            self._pods.pop(key, None)
            self._services = [
                s.model_copy(update={"pods": [p for p in s.pods if p.key != key]})
                if s.has_pod(key)
                else s
                for s in self._services
            ]

    # =========================================================================
    # Ingress handlers
    # =========================================================================

    def ingress_created(self, ingress: IngressSummary) -> None:
        with self._lock:
            self._ingresses[ingress.key] = ingress
            backends = ingress.backend_services()
            self._services = [
                s.model_copy(
                    update={
                        "ingresses": [
                            *s.ingresses,
                            ingress.model_copy(update={"url": ingress.url_for(s.name)}),
                        ]
                    }
                )
                if s.namespace == ingress.namespace
                and s.name in backends
                and not s.has_ingress(ingress.key)
                else s
                for s in self._services
            ]

    def ingress_updated(self, ingress: IngressSummary) -> None:
        with self._lock:
            self._ingresses[ingress.key] = ingress
            self._services = [self._with_ingress_url(s, ingress) for s in self._services]

    def ingress_deleted(self, key: str) -> None:
        with self._lock:
            self._ingresses.pop(key, None)
            self._services = [
                s.model_copy(update={"ingresses": [i for i in s.ingresses if i.key != key]})
                if s.has_ingress(key)
                else s
                for s in self._services
            ]

    @staticmethod
    def _with_ingress_url(service: Service, ingress: IngressSummary) -> Service:
        if not service.has_ingress(ingress.key):
            return service
        url = ingress.url_for(service.name)
        if url is None:
            return service
        return service.model_copy(
            update={
                "ingresses": [
                    i.model_copy(update={"url": url}) if i.key == ingress.key else i
                    for i in service.ingresses
                ]
            }
        )


# =============================================================================
# Dispatcher
# =============================================================================

_STOP = object()


class LiveStateDispatcher:
    """Single writer for a ``LiveStateStore``.

    Watch threads ``submit`` events; one worker thread drains the queue and
    applies them in arrival order.
    """

    def __init__(self, store: LiveStateStore) -> None:
        self._store = store
        self._queue: queue.Queue[Any] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._log = logger.bind(entity="live_state_dispatcher")

    @property
    def store(self) -> LiveStateStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._run, name="fluxdeck-live-state", daemon=True
        )
        self._thread.start()
        self._log.debug("dispatcher_started")

    def submit(self, event: WatchEvent) -> None:
        self._queue.put(event)

    def drain(self) -> None:
        """Block until every submitted event has been applied."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None
        self._log.debug("dispatcher_stopped")

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._store.apply(item)
            except Exception:
                self._log.exception("live_state_event_failed")
            finally:
                self._queue.task_done()
