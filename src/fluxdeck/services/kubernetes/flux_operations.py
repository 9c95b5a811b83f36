"""Reconcile, suspend and resume for Flux resources.

Each operation runs ``Requested -> Patched -> Polling`` and ends
``Succeeded``, ``Failed`` or ``TimedOut``. Per-kind differences live in
``FluxKind`` adapters looked up from a registry, so the state machine
itself never branches on the kind.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from fluxdeck.integrations.kubernetes.config import FluxOperationsConfig
from fluxdeck.integrations.kubernetes.exceptions import (
    AlreadySuspendedError,
    KubernetesConflictError,
    KubernetesError,
    KubernetesTimeoutError,
    OperationCancelledError,
    ReadinessFailedError,
)
from fluxdeck.integrations.kubernetes.models.flux import FluxCondition, find_condition
from fluxdeck.services.kubernetes.base import K8sBaseManager
from fluxdeck.services.kubernetes.flux_manager import (
    BUCKET_PLURAL,
    GIT_REPOSITORY_PLURAL,
    HELM_GROUP,
    HELM_RELEASE_PLURAL,
    HELM_REPOSITORY_PLURAL,
    HELM_VERSION,
    KUSTOMIZATION_PLURAL,
    KUSTOMIZE_GROUP,
    KUSTOMIZE_VERSION,
    OCI_REPOSITORY_PLURAL,
    SOURCE_BETA_VERSION,
    SOURCE_GROUP,
    SOURCE_VERSION,
    TERRAFORM_GROUP,
    TERRAFORM_PLURAL,
    TERRAFORM_VERSION,
)

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.client import KubernetesClient

T = TypeVar("T")

# Annotations read by the Flux controllers
RECONCILE_ANNOTATION = "reconcile.fluxcd.io/requestedAt"
FORCE_ANNOTATION = "reconcile.fluxcd.io/forceAt"

TIMEOUT_MESSAGE = "timed out waiting for reconciliation"


def rfc3339_nano(now: datetime | None = None) -> str:
    """UTC timestamp in RFC3339Nano form (``2024-01-02T03:04:05.123456000Z``)."""
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f") + "000Z"


# =============================================================================
# Readiness
# =============================================================================


class Readiness(StrEnum):
    IN_PROGRESS = "InProgress"
    CURRENT = "Current"
    FAILED = "Failed"


def _status_of(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def compute_readiness(obj: dict[str, Any]) -> tuple[Readiness, str]:
    """Readiness of a Flux object from its generation and conditions.

    Returns:
        The readiness and the message explaining it.
    """
    generation = (obj.get("metadata") or {}).get("generation") or 0
    status = _status_of(obj)
    observed = status.get("observedGeneration") or 0
    conditions = [FluxCondition.from_k8s_object(c) for c in status.get("conditions") or []]
    ready = find_condition(conditions, "Ready")

    if observed < 1 or observed != generation:
        return Readiness.IN_PROGRESS, "waiting for the latest generation to be observed"
    if ready is not None and ready.observed_generation and ready.observed_generation != generation:
        return Readiness.IN_PROGRESS, "Ready condition refers to an older generation"

    reconciling = find_condition(conditions, "Reconciling")
    if reconciling is not None and reconciling.status == "True":
        return Readiness.IN_PROGRESS, reconciling.message or "reconciliation in progress"

    stalled = find_condition(conditions, "Stalled")
    if stalled is not None and stalled.status == "True":
        return Readiness.FAILED, stalled.message or stalled.reason

    if ready is None or ready.status == "Unknown":
        return Readiness.IN_PROGRESS, "waiting for Ready condition"
    if ready.status == "False":
        return Readiness.FAILED, ready.message or ready.reason
    return Readiness.CURRENT, ready.message or ""


# =============================================================================
# Kind adapters
# =============================================================================


class ReadinessVariant(StrEnum):
    DYNAMIC = "dynamic"
    STATIC = "static"


def _artifact_revision(obj: dict[str, Any]) -> str:
    return (_status_of(obj).get("artifact") or {}).get("revision", "")


def _applied_revision(obj: dict[str, Any]) -> str:
    return _status_of(obj).get("lastAppliedRevision", "")


@dataclass(frozen=True)
class FluxKind:
    """How the orchestrator handles one Flux resource kind."""

    kind: str
    group: str
    version: str
    plural: str
    success_verb: str
    revision: Callable[[dict[str, Any]], str]
    last_handled_field: str = "lastHandledReconcileAt"
    readiness: ReadinessVariant = ReadinessVariant.DYNAMIC
    force_on_reconcile: bool = False

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @property
    def is_static(self) -> bool:
        return self.readiness is ReadinessVariant.STATIC

    def is_suspended(self, obj: dict[str, Any]) -> bool:
        return bool((obj.get("spec") or {}).get("suspend", False))

    def last_handled_reconcile(self, obj: dict[str, Any]) -> str | None:
        return _status_of(obj).get(self.last_handled_field)

    def success_message(self, obj: dict[str, Any]) -> str:
        return f"{self.success_verb} revision {self.revision(obj)}"

    def reconcile_patch(self, requested_at: str) -> dict[str, Any]:
        annotations = {RECONCILE_ANNOTATION: requested_at}
        if self.force_on_reconcile:
            annotations[FORCE_ANNOTATION] = requested_at
        return {"metadata": {"annotations": annotations}}


FLUX_KINDS: dict[str, FluxKind] = {}
KIND_ALIASES: dict[str, str] = {
    "source": "gitrepository",
    "ks": "kustomization",
    "hr": "helmrelease",
    "tf": "terraform",
}


def register_kind(adapter: FluxKind) -> FluxKind:
    FLUX_KINDS[adapter.kind.lower()] = adapter
    return adapter


def get_kind(name: str) -> FluxKind:
    """Look up an adapter by kind name or alias, case-insensitively.

    Raises:
        KeyError: For an unknown kind.
    """
    key = name.lower()
    key = KIND_ALIASES.get(key, key)
    try:
        return FLUX_KINDS[key]
    except KeyError:
        raise KeyError(f"unsupported Flux kind: {name}") from None


for _adapter in (
    FluxKind(
        "Kustomization",
        KUSTOMIZE_GROUP,
        KUSTOMIZE_VERSION,
        KUSTOMIZATION_PLURAL,
        "applied",
        _applied_revision,
    ),
    FluxKind(
        "HelmRelease",
        HELM_GROUP,
        HELM_VERSION,
        HELM_RELEASE_PLURAL,
        "applied",
        _applied_revision,
        force_on_reconcile=True,
    ),
    FluxKind(
        "GitRepository",
        SOURCE_GROUP,
        SOURCE_VERSION,
        GIT_REPOSITORY_PLURAL,
        "fetched",
        _artifact_revision,
    ),
    FluxKind(
        "OCIRepository",
        SOURCE_GROUP,
        SOURCE_BETA_VERSION,
        OCI_REPOSITORY_PLURAL,
        "fetched",
        _artifact_revision,
    ),
    FluxKind(
        "Bucket", SOURCE_GROUP, SOURCE_BETA_VERSION, BUCKET_PLURAL, "fetched", _artifact_revision
    ),
    FluxKind(
        "HelmRepository",
        SOURCE_GROUP,
        SOURCE_VERSION,
        HELM_REPOSITORY_PLURAL,
        "fetched",
        _artifact_revision,
    ),
    FluxKind(
        "Terraform",
        TERRAFORM_GROUP,
        TERRAFORM_VERSION,
        TERRAFORM_PLURAL,
        "fetched",
        _applied_revision,
        last_handled_field="lastAttemptedRevision",
    ),
):
    register_kind(_adapter)


# =============================================================================
# Results
# =============================================================================


class Operation(StrEnum):
    RECONCILE = "reconcile"
    SUSPEND = "suspend"
    RESUME = "resume"


class OperationPhase(StrEnum):
    REQUESTED = "Requested"
    PATCHED = "Patched"
    POLLING = "Polling"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class OperationResult(BaseModel):
    """Outcome of an action request, shaped for the user."""

    operation: Operation
    kind: str
    namespace: str
    name: str
    phase: OperationPhase
    message: str

    @property
    def succeeded(self) -> bool:
        return self.phase is OperationPhase.SUCCEEDED


# =============================================================================
# Orchestrator
# =============================================================================


class FluxOperations(K8sBaseManager):
    """Patch-then-poll state machine for Flux resources.

    ``clock``, ``sleep`` and ``conflict_wait`` are injectable so the poll
    cadence and conflict back-off can be driven without real time.
    """

    _entity_name = "flux_operation"

    def __init__(
        self,
        client: KubernetesClient,
        config: FluxOperationsConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        conflict_wait: wait_base | None = None,
    ) -> None:
        super().__init__(client)
        self._config = config or FluxOperationsConfig()
        self._clock = clock
        self._sleep = sleep
        # 10ms, 50ms, 250ms between the default four attempts
        self._conflict_wait = conflict_wait or wait_exponential(multiplier=0.01, exp_base=5)

    # =========================================================================
    # API access
    # =========================================================================

    def resolve_namespace(self, namespace: str | None) -> str:
        """Namespace to act in; the Flux namespace when omitted."""
        return namespace or self._client.flux_namespace

    def get_object(self, kind: FluxKind, namespace: str, name: str) -> dict[str, Any]:
        """Fetch the raw object.

        Raises:
            KubernetesNotFoundError: If it does not exist.
        """
        return self._api_call(
            lambda: self._client.custom_objects.get_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name
            ),
            kind.kind,
            name,
            namespace,
        )

    def _patch(
        self,
        kind: FluxKind,
        namespace: str,
        name: str,
        body: dict[str, Any],
        current: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge-patch ``body`` guarded by the object's resourceVersion.

        A 409 re-reads the object and tries again within the conflict budget.

        Raises:
            KubernetesConflictError: When every attempt collided.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(KubernetesConflictError),
            stop=stop_after_attempt(self._config.conflict_attempts),
            wait=self._conflict_wait,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self._log.debug(
                        "retrying_conflicting_patch",
                        kind=kind.kind,
                        name=name,
                        namespace=namespace,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    current = self.get_object(kind, namespace, name)
                resource_version = (current.get("metadata") or {}).get("resourceVersion")
                patch = {**body, "metadata": {**body.get("metadata", {})}}
                if resource_version:
                    patch["metadata"]["resourceVersion"] = resource_version
                return self._api_call(
                    lambda: self._client.custom_objects.patch_namespaced_custom_object(
                        kind.group, kind.version, namespace, kind.plural, name, patch
                    ),
                    kind.kind,
                    name,
                    namespace,
                )
        raise AssertionError("unreachable")  # pragma: no cover

    def _poll(
        self,
        check: Callable[[], T | None],
        cancel: threading.Event | None = None,
    ) -> T:
        """Run ``check`` now and then every poll interval until it returns a value.

        Raises:
            KubernetesTimeoutError: Once the configured timeout has elapsed.
            OperationCancelledError: If ``cancel`` is set between polls.
        """
        interval = self._config.poll_interval
        timeout = self._config.timeout
        start = self._clock()
        while True:
            if cancel is not None and cancel.is_set():
                raise OperationCancelledError()
            result = check()
            if result is not None:
                return result
            remaining = timeout - (self._clock() - start)
            if remaining <= 0:
                raise KubernetesTimeoutError(TIMEOUT_MESSAGE, timeout_seconds=timeout)
            self._sleep(min(interval, remaining))

    # =========================================================================
    # Operations
    # =========================================================================

    def reconcile(
        self,
        kind: FluxKind,
        namespace: str,
        name: str,
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """Request a reconciliation and wait for the controller to handle it.

        Returns:
            The kind's success message.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
            AlreadySuspendedError: If the object is suspended.
            ReadinessFailedError: If reconciliation finished unsuccessfully.
            KubernetesTimeoutError: If it did not finish in time.
        """
        obj = self.get_object(kind, namespace, name)
        if kind.is_suspended(obj):
            raise AlreadySuspendedError(kind.kind, name, namespace)

        last_handled = kind.last_handled_reconcile(obj)
        requested_at = rfc3339_nano()
        self._log.info(
            "reconcile_requested", kind=kind.kind, name=name, namespace=namespace
        )
        self._patch(kind, namespace, name, kind.reconcile_patch(requested_at), obj)
        self._log.debug("reconcile_annotated", kind=kind.kind, name=name, requested_at=requested_at)

        def check() -> dict[str, Any] | None:
            current = self.get_object(kind, namespace, name)
            if kind.last_handled_reconcile(current) == last_handled:
                return None
            readiness, message = compute_readiness(current)
            if readiness is Readiness.FAILED:
                raise ReadinessFailedError(
                    f"reconciliation failed: {message}", kind.kind, name, namespace, reason=message
                )
            if readiness is Readiness.IN_PROGRESS:
                return None
            return current

        reconciled = self._poll(check, cancel)
        message = kind.success_message(reconciled)
        self._log.info(
            "reconcile_completed", kind=kind.kind, name=name, namespace=namespace, result=message
        )
        return message

    def suspend(self, kind: FluxKind, namespace: str, name: str) -> str:
        """Set ``spec.suspend``.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
        """
        obj = self.get_object(kind, namespace, name)
        self._patch(kind, namespace, name, {"spec": {"suspend": True}}, obj)
        self._log.info("suspended", kind=kind.kind, name=name, namespace=namespace)
        return f"{kind.kind} suspended"

    def resume(
        self,
        kind: FluxKind,
        namespace: str,
        name: str,
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """Clear ``spec.suspend`` and wait until the object is ready.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
            ReadinessFailedError: If the object reports a failure.
            KubernetesTimeoutError: If it did not become ready in time.
        """
        obj = self.get_object(kind, namespace, name)
        self._patch(kind, namespace, name, {"spec": {"suspend": False}}, obj)
        self._log.info("resumed", kind=kind.kind, name=name, namespace=namespace)

        def check() -> dict[str, Any] | None:
            current = self.get_object(kind, namespace, name)
            if kind.is_static:
                return current
            readiness, message = compute_readiness(current)
            if readiness is Readiness.FAILED:
                raise ReadinessFailedError(message, kind.kind, name, namespace, reason=message)
            if readiness is Readiness.IN_PROGRESS:
                return None
            return current

        ready = self._poll(check, cancel)
        message = kind.success_message(ready)
        self._log.info(
            "resume_completed", kind=kind.kind, name=name, namespace=namespace, result=message
        )
        return message

    def execute(
        self,
        operation: Operation | str,
        kind: FluxKind | str,
        namespace: str,
        name: str,
        *,
        cancel: threading.Event | None = None,
    ) -> OperationResult:
        """Run an operation and report its outcome instead of raising.

        Raises:
            KeyError: For an unknown kind name.
            ValueError: For an unknown operation.
        """
        operation = Operation(operation)
        adapter = get_kind(kind) if isinstance(kind, str) else kind

        def result(phase: OperationPhase, message: str) -> OperationResult:
            return OperationResult(
                operation=operation,
                kind=adapter.kind,
                namespace=namespace,
                name=name,
                phase=phase,
                message=message,
            )

        try:
            if operation is Operation.RECONCILE:
                message = self.reconcile(adapter, namespace, name, cancel=cancel)
            elif operation is Operation.SUSPEND:
                message = self.suspend(adapter, namespace, name)
            else:
                message = self.resume(adapter, namespace, name, cancel=cancel)
        except KubernetesTimeoutError:
            self._log.warning(
                "operation_timed_out", operation=str(operation), kind=adapter.kind, name=name
            )
            return result(OperationPhase.TIMED_OUT, TIMEOUT_MESSAGE)
        except KubernetesError as e:
            self._log.warning(
                "operation_failed",
                operation=str(operation),
                kind=adapter.kind,
                name=name,
                error=e.message,
            )
            return result(OperationPhase.FAILED, e.message)

        return result(OperationPhase.SUCCEEDED, message)
