"""Streaming operations manager for Kubernetes.

Runs the long-lived streams behind the live view:

- one watch thread per resource kind, feeding a ``LiveStateDispatcher``;
- follow-mode log streams for every container of a Service's Pods,
  tracked in a registry keyed by (namespace, pod, container).
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple

import structlog
from pydantic import BaseModel, ValidationError

from fluxdeck.integrations.kubernetes.exceptions import MalformedEventError
from fluxdeck.integrations.kubernetes.models.base import _safe_get, object_key
from fluxdeck.integrations.kubernetes.models.networking import (
    IngressSummary,
    ServiceSummary,
)
from fluxdeck.integrations.kubernetes.models.watch import (
    EventType,
    ResourceKind,
    WatchEvent,
)
from fluxdeck.integrations.kubernetes.models.workloads import (
    DeploymentSummary,
    PodSummary,
)
from fluxdeck.services.kubernetes.base import K8sBaseManager

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.client import KubernetesClient
    from fluxdeck.integrations.kubernetes.models.services import Service
    from fluxdeck.services.kubernetes.live_state import LiveStateDispatcher

logger = structlog.get_logger()

LOG_TAIL_LINES = 100
LOG_CHUNK_SIZE = 1000
WATCH_RESTART_BACKOFF_SECONDS = 5.0


# =============================================================================
# Log messages
# =============================================================================


class PodLogMessage(BaseModel):
    """One chunk of a container log line."""

    timestamp: str
    container: str
    pod: str
    svc: str
    message: str


LogSink = Callable[[PodLogMessage], None]


def chunk_line(line: str, size: int = LOG_CHUNK_SIZE) -> list[str]:
    """Split a line into pieces of at most ``size`` characters."""
    if len(line) <= size:
        return [line]
    return [line[i : i + size] for i in range(0, len(line), size)]


def parse_log_chunk(chunk: str) -> tuple[str, str]:
    """Split ``"<timestamp> <message>"`` on the first space."""
    timestamp, _, message = chunk.partition(" ")
    return timestamp, message


class LogKey(NamedTuple):
    namespace: str
    pod: str
    container: str


@dataclass
class _LogStream:
    key: LogKey
    service: str
    cancel: threading.Event = field(default_factory=threading.Event)
    response: Any = None
    thread: threading.Thread | None = None


class LogStreamRegistry:
    """Running log streams with their cancel tokens.

    Cancelling sets the stream's event and closes its HTTP response, which
    unblocks the reading thread. Nothing ever blocks on a stopped stream.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[LogKey, _LogStream] = {}

    def register(self, stream: _LogStream) -> bool:
        """Track ``stream``; False if one is already running for its key."""
        with self._lock:
            if stream.key in self._streams:
                return False
            self._streams[stream.key] = stream
            return True

    def attach_response(self, key: LogKey, response: Any) -> bool:
        """Remember the open response; False if the stream was cancelled meanwhile."""
        with self._lock:
            stream = self._streams.get(key)
            if stream is None or stream.cancel.is_set():
                return False
            stream.response = response
            return True

    def remove(self, key: LogKey) -> None:
        with self._lock:
            self._streams.pop(key, None)

    def running(self) -> list[LogKey]:
        with self._lock:
            return list(self._streams)

    def cancel(self, key: LogKey) -> None:
        with self._lock:
            stream = self._streams.pop(key, None)
        if stream is not None:
            _cancel(stream)

    def stop_service(self, namespace: str, service: str) -> int:
        """Cancel every stream started for a Service. Returns how many."""
        svc = object_key(namespace, service)
        with self._lock:
            stopped = [s for s in self._streams.values() if s.service == svc]
            for s in stopped:
                del self._streams[s.key]
        for s in stopped:
            _cancel(s)
        return len(stopped)

    def stop_all(self) -> int:
        with self._lock:
            stopped = list(self._streams.values())
            self._streams.clear()
        for s in stopped:
            _cancel(s)
        return len(stopped)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the reading threads of tracked streams to finish."""
        with self._lock:
            threads = [s.thread for s in self._streams.values() if s.thread is not None]
        for t in threads:
            t.join(timeout)


def _cancel(stream: _LogStream) -> None:
    stream.cancel.set()
    if stream.response is not None:
        stream.response.close()


# =============================================================================
# Manager
# =============================================================================


class StreamingManager(K8sBaseManager):
    """Manager for follow-mode log streams of Service Pods."""

    _entity_name = "streaming"

    def __init__(
        self,
        client: KubernetesClient,
        registry: LogStreamRegistry | None = None,
    ) -> None:
        super().__init__(client)
        self._registry = registry or LogStreamRegistry()

    @property
    def registry(self) -> LogStreamRegistry:
        return self._registry

    def stream_service_logs(
        self,
        namespace: str,
        service: str,
        services: list[Service],
        sink: LogSink,
    ) -> list[LogKey]:
        """Follow the logs of every container of a Service's Pods.

        Init containers come first. A container that is already streaming
        is left as is.

        Returns:
            Keys of the streams started by this call.
        """
        target = next(
            (s for s in services if s.namespace == namespace and s.name == service), None
        )
        if target is None:
            self._log.debug("log_stream_service_not_found", namespace=namespace, service=service)
            return []

        svc = object_key(namespace, service)
        started: list[LogKey] = []
        for pod in target.pods:
            for container in pod.container_names:
                stream = _LogStream(key=LogKey(namespace, pod.name, container), service=svc)
                if not self._registry.register(stream):
                    continue
                stream.thread = threading.Thread(
                    target=self._follow_logs,
                    args=(stream, sink),
                    name=f"logs-{pod.name}-{container}",
                    daemon=True,
                )
                stream.thread.start()
                started.append(stream.key)

        self._log.info("log_streams_started", service=svc, count=len(started))
        return started

    def stop_service_logs(self, namespace: str, service: str) -> int:
        stopped = self._registry.stop_service(namespace, service)
        self._log.info("log_streams_stopped", namespace=namespace, service=service, count=stopped)
        return stopped

    def stop_all_logs(self) -> int:
        stopped = self._registry.stop_all()
        self._log.info("all_log_streams_stopped", count=stopped)
        return stopped

    def _follow_logs(self, stream: _LogStream, sink: LogSink) -> None:
        """Read one container's log until it ends or is cancelled."""
        namespace, pod, container = stream.key
        try:
            response = self._client.core_v1.read_namespaced_pod_log(
                name=pod,
                namespace=namespace,
                container=container,
                follow=True,
                tail_lines=LOG_TAIL_LINES,
                timestamps=True,
                _preload_content=False,
            )
        except Exception as e:
            error = self._client.translate_api_exception(e, "Pod", pod, namespace)
            self._log.error("log_stream_failed", pod=pod, container=container, error=str(error))
            self._registry.remove(stream.key)
            return

        if not self._registry.attach_response(stream.key, response):
            response.close()
            return

        try:
            for raw in response:
                if stream.cancel.is_set():
                    break
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                for chunk in chunk_line(line.rstrip("\r\n")):
                    timestamp, message = parse_log_chunk(chunk)
                    sink(
                        PodLogMessage(
                            timestamp=timestamp,
                            container=container,
                            pod=pod,
                            svc=stream.service,
                            message=message,
                        )
                    )
        except Exception as e:
            if not stream.cancel.is_set():
                self._log.error(
                    "log_stream_interrupted", pod=pod, container=container, error=str(e)
                )
        finally:
            self._registry.remove(stream.key)
            self._log.debug("log_stream_ended", pod=pod, container=container)


# =============================================================================
# Watches
# =============================================================================

_SUMMARIES: dict[ResourceKind, Callable[[Any], Any]] = {
    ResourceKind.SERVICE: ServiceSummary.from_k8s_object,
    ResourceKind.DEPLOYMENT: DeploymentSummary.from_k8s_object,
    ResourceKind.POD: PodSummary.from_k8s_object,
    ResourceKind.INGRESS: IngressSummary.from_k8s_object,
}


def _item_key(obj: Any) -> str:
    return object_key(
        _safe_get(obj, "metadata", "namespace"), _safe_get(obj, "metadata", "name", default="")
    )


def to_watch_event(kind: ResourceKind, raw: dict[str, Any]) -> WatchEvent | None:
    """Convert one ``Watch.stream`` item; None for types the store ignores.

    Raises:
        MalformedEventError: The object does not convert to its summary.
    """
    try:
        event_type = EventType.from_watch_type(raw.get("type", ""))
    except KeyError:
        return None

    obj = raw.get("object")
    key = _item_key(obj)
    if event_type is EventType.DELETED:
        return WatchEvent(resource=kind, type=event_type, key=key)
    try:
        summary = _SUMMARIES[kind](obj)
    except ValidationError as e:
        raise MalformedEventError(f"{kind} {key} does not convert: {e}", payload=obj) from e
    return WatchEvent(resource=kind, type=event_type, key=key, obj=summary)


class ResourceWatcher:
    """One cluster-wide list-then-watch thread per resource kind.

    Each session lists the kind, emits DELETED for every key seen earlier
    that the listing no longer holds, then watches from the listing's
    resourceVersion. A stream the server closes resumes from the last
    version seen; a failed stream is logged and relisted after a back-off.
    """

    def __init__(
        self,
        client: KubernetesClient,
        dispatcher: LiveStateDispatcher,
        *,
        backoff: float = WATCH_RESTART_BACKOFF_SECONDS,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._backoff = backoff
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._watches: dict[ResourceKind, Any] = {}
        self._lock = threading.Lock()
        self._log = logger.bind(entity="watch")

    def _list_function(self, kind: ResourceKind) -> Callable[..., Any]:
        return {
            ResourceKind.SERVICE: self._client.core_v1.list_service_for_all_namespaces,
            ResourceKind.DEPLOYMENT: self._client.apps_v1.list_deployment_for_all_namespaces,
            ResourceKind.POD: self._client.core_v1.list_pod_for_all_namespaces,
            ResourceKind.INGRESS: self._client.networking_v1.list_ingress_for_all_namespaces,
        }[kind]

    def start(self, kinds: tuple[ResourceKind, ...] = tuple(ResourceKind)) -> None:
        self._stop.clear()
        for kind in kinds:
            thread = threading.Thread(
                target=self._run, args=(kind,), name=f"watch-{kind}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        self._log.info("watches_started", kinds=[str(k) for k in kinds])

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        with self._lock:
            watches = list(self._watches.values())
        for watch in watches:
            watch.stop()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
        self._log.info("watches_stopped")

    def _run(self, kind: ResourceKind) -> None:
        list_fn = self._list_function(kind)
        known: set[str] = set()
        resource_version: str | None = None
        while not self._stop.is_set():
            watch = self._client.new_watch()
            with self._lock:
                self._watches[kind] = watch
            try:
                if resource_version is None:
                    resource_version = self._relist(kind, list_fn, known)
                for raw in watch.stream(list_fn, resource_version=resource_version):
                    if self._stop.is_set():
                        break
                    self._submit(kind, raw, known)
                    resource_version = (
                        _safe_get(raw.get("object"), "metadata", "resource_version")
                        or resource_version
                    )
            except Exception as e:
                if self._stop.is_set():
                    break
                resource_version = None
                error = self._client.translate_api_exception(e)
                self._log.warning(
                    "watch_stream_failed",
                    kind=str(kind),
                    error=str(error),
                    retry_in=self._backoff,
                )
                self._stop.wait(self._backoff)

    def _relist(
        self, kind: ResourceKind, list_fn: Callable[..., Any], known: set[str]
    ) -> str | None:
        """Bring the store in line with a fresh listing; its resourceVersion."""
        listing = list_fn()
        items = _safe_get(listing, "items", default=[])
        present = {_item_key(item) for item in items}
        for key in sorted(known - present):
            self._dispatcher.submit(WatchEvent(resource=kind, type=EventType.DELETED, key=key))
            known.discard(key)
        for item in items:
            watch_type = "MODIFIED" if _item_key(item) in known else "ADDED"
            self._submit(kind, {"type": watch_type, "object": item}, known)
        self._log.debug("watch_relisted", kind=str(kind), count=len(present))
        return _safe_get(listing, "metadata", "resource_version")

    def _submit(self, kind: ResourceKind, raw: dict[str, Any], known: set[str]) -> None:
        try:
            event = to_watch_event(kind, raw)
        except MalformedEventError as e:
            self._log.warning("dropped_malformed_event", kind=str(kind), error=str(e))
            return
        if event is None:
            return
        if event.type is EventType.DELETED:
            known.discard(event.key)
        else:
            known.add(event.key)
        self._dispatcher.submit(event)
