"""Unit tests for the Flux reconcile/suspend/resume state machine."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException
from tenacity import wait_none

from fluxdeck.integrations.kubernetes.config import FluxOperationsConfig
from fluxdeck.services.kubernetes.flux_manager import (
    HELM_GROUP,
    HELM_RELEASE_PLURAL,
    HELM_VERSION,
    KUSTOMIZATION_PLURAL,
    KUSTOMIZE_GROUP,
    KUSTOMIZE_VERSION,
)
from fluxdeck.services.kubernetes.flux_operations import (
    FORCE_ANNOTATION,
    RECONCILE_ANNOTATION,
    TIMEOUT_MESSAGE,
    FluxKind,
    FluxOperations,
    Operation,
    OperationPhase,
    Readiness,
    ReadinessVariant,
    compute_readiness,
    get_kind,
    rfc3339_nano,
)


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def operations(mock_k8s_client: MagicMock, clock: FakeClock) -> FluxOperations:
    """FluxOperations driven by a fake clock with no conflict back-off."""
    return FluxOperations(
        mock_k8s_client,
        FluxOperationsConfig(),
        clock=clock,
        sleep=clock.sleep,
        conflict_wait=wait_none(),
    )


def flux_object(
    *,
    generation: int = 1,
    observed: int = 1,
    ready: str | None = "True",
    message: str = "Applied revision: main@sha1:abc",
    handled: str | None = None,
    suspend: bool = False,
    resource_version: str = "100",
    extra_conditions: list[dict[str, Any]] | None = None,
    revision: str = "main@sha1:abc",
) -> dict[str, Any]:
    conditions: list[dict[str, Any]] = list(extra_conditions or [])
    if ready is not None:
        conditions.append(
            {"type": "Ready", "status": ready, "reason": "Test", "message": message}
        )
    status: dict[str, Any] = {
        "observedGeneration": observed,
        "conditions": conditions,
        "lastAppliedRevision": revision,
        "artifact": {"revision": revision},
    }
    if handled is not None:
        status["lastHandledReconcileAt"] = handled
    return {
        "metadata": {
            "name": "apps",
            "namespace": "flux-system",
            "generation": generation,
            "resourceVersion": resource_version,
        },
        "spec": {"suspend": suspend},
        "status": status,
    }


def conflict() -> ApiException:
    return ApiException(status=409, reason="Conflict")


KUSTOMIZATION = get_kind("Kustomization")


# =============================================================================
# Readiness
# =============================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestComputeReadiness:
    """Tests for compute_readiness."""

    def test_ready_true_is_current(self) -> None:
        readiness, message = compute_readiness(flux_object())

        assert readiness is Readiness.CURRENT
        assert message == "Applied revision: main@sha1:abc"

    def test_unobserved_generation_is_in_progress(self) -> None:
        readiness, _ = compute_readiness(flux_object(generation=2, observed=1))

        assert readiness is Readiness.IN_PROGRESS

    def test_never_observed_is_in_progress(self) -> None:
        readiness, _ = compute_readiness(flux_object(observed=0, generation=0))

        assert readiness is Readiness.IN_PROGRESS

    def test_stale_ready_condition_is_in_progress(self) -> None:
        obj = flux_object(generation=3, observed=3)
        obj["status"]["conditions"][0]["observedGeneration"] = 2

        readiness, _ = compute_readiness(obj)

        assert readiness is Readiness.IN_PROGRESS

    def test_reconciling_wins_over_ready(self) -> None:
        obj = flux_object(
            extra_conditions=[
                {"type": "Reconciling", "status": "True", "message": "building"},
            ]
        )

        assert compute_readiness(obj) == (Readiness.IN_PROGRESS, "building")

    def test_stalled_is_failed(self) -> None:
        obj = flux_object(
            ready="False",
            extra_conditions=[
                {"type": "Stalled", "status": "True", "message": "invalid path"},
            ],
        )

        assert compute_readiness(obj) == (Readiness.FAILED, "invalid path")

    @pytest.mark.parametrize("ready", [None, "Unknown"])
    def test_missing_or_unknown_ready_is_in_progress(self, ready: str | None) -> None:
        readiness, _ = compute_readiness(flux_object(ready=ready))

        assert readiness is Readiness.IN_PROGRESS

    def test_ready_false_is_failed(self) -> None:
        assert compute_readiness(flux_object(ready="False", message="build failed")) == (
            Readiness.FAILED,
            "build failed",
        )


# =============================================================================
# Kind adapters
# =============================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestKindRegistry:
    """Tests for kind lookup and per-kind behaviour."""

    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("kustomization", "Kustomization"),
            ("KS", "Kustomization"),
            ("hr", "HelmRelease"),
            ("HelmRelease", "HelmRelease"),
            ("source", "GitRepository"),
            ("ocirepository", "OCIRepository"),
            ("bucket", "Bucket"),
            ("helmrepository", "HelmRepository"),
            ("tf", "Terraform"),
        ],
    )
    def test_get_kind(self, name: str, kind: str) -> None:
        assert get_kind(name).kind == kind

    def test_unknown_kind(self) -> None:
        with pytest.raises(KeyError, match="unsupported Flux kind: Widget"):
            get_kind("Widget")

    def test_reconcile_patch_annotates_request(self) -> None:
        patch = KUSTOMIZATION.reconcile_patch("2026-01-01T00:00:00.000000000Z")

        assert patch == {
            "metadata": {
                "annotations": {RECONCILE_ANNOTATION: "2026-01-01T00:00:00.000000000Z"}
            }
        }

    def test_helm_release_reconcile_forces(self) -> None:
        annotations = get_kind("hr").reconcile_patch("t")["metadata"]["annotations"]

        assert annotations == {RECONCILE_ANNOTATION: "t", FORCE_ANNOTATION: "t"}

    def test_success_messages(self) -> None:
        obj = flux_object(revision="main@sha1:def")

        assert KUSTOMIZATION.success_message(obj) == "applied revision main@sha1:def"
        assert get_kind("GitRepository").success_message(obj) == "fetched revision main@sha1:def"

    def test_terraform_tracks_last_attempted_revision(self) -> None:
        obj = {"status": {"lastAttemptedRevision": "v1", "lastHandledReconcileAt": "t"}}

        assert get_kind("Terraform").last_handled_reconcile(obj) == "v1"

    def test_api_version(self) -> None:
        assert KUSTOMIZATION.api_version == "kustomize.toolkit.fluxcd.io/v1"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestRfc3339Nano:
    """Tests for the reconcile request timestamp."""

    def test_format(self) -> None:
        ts = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=UTC)

        assert rfc3339_nano(ts) == "2024-01-02T03:04:05.123456000Z"

    def test_defaults_to_now(self) -> None:
        assert rfc3339_nano().endswith("000Z")


# =============================================================================
# Operations
# =============================================================================


@pytest.mark.unit
@pytest.mark.kubernetes
class TestReconcile:
    """Tests for FluxOperations.reconcile."""

    def test_succeeds_once_request_is_handled(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        """The first poll sees the old handled marker, the second the new one."""
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.side_effect = [
            flux_object(handled="old"),
            flux_object(handled="old"),
            flux_object(handled="new", revision="main@sha1:fff"),
        ]

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.SUCCEEDED
        assert result.succeeded is True
        assert result.message == "applied revision main@sha1:fff"
        assert result.kind == "Kustomization"
        assert clock.sleeps == [2.0]

    def test_patch_carries_annotation_and_resource_version(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.side_effect = [
            flux_object(handled="old", resource_version="7"),
            flux_object(handled="new"),
        ]

        operations.reconcile(KUSTOMIZATION, "flux-system", "apps")

        args = custom.patch_namespaced_custom_object.call_args.args
        assert args[:5] == (
            KUSTOMIZE_GROUP,
            KUSTOMIZE_VERSION,
            "flux-system",
            KUSTOMIZATION_PLURAL,
            "apps",
        )
        body = args[5]
        assert body["metadata"]["resourceVersion"] == "7"
        assert RECONCILE_ANNOTATION in body["metadata"]["annotations"]

    def test_helm_release_uses_helm_crd(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.side_effect = [
            flux_object(handled="old"),
            flux_object(handled="new"),
        ]

        result = operations.execute(Operation.RECONCILE, "hr", "apps", "nginx")

        assert result.succeeded
        args = custom.patch_namespaced_custom_object.call_args.args
        assert args[:4] == (HELM_GROUP, HELM_VERSION, "apps", HELM_RELEASE_PLURAL)
        assert FORCE_ANNOTATION in args[5]["metadata"]["annotations"]

    def test_times_out_at_ceiling(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        """Polling stops exactly at the timeout, never later."""
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object(
            handled="old"
        )

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.TIMED_OUT
        assert result.message == TIMEOUT_MESSAGE
        assert clock.now == 300.0
        assert all(s == 2.0 for s in clock.sleeps)

    def test_short_timeout_clamps_last_sleep(
        self,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        operations = FluxOperations(
            mock_k8s_client,
            FluxOperationsConfig(poll_interval=2.0, timeout=3.0),
            clock=clock,
            sleep=clock.sleep,
            conflict_wait=wait_none(),
        )
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object(
            handled="old"
        )

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.TIMED_OUT
        assert clock.sleeps == [2.0, 1.0]

    def test_failed_readiness(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.side_effect = [
            flux_object(handled="old"),
            flux_object(handled="new", ready="False", message="kustomize build failed"),
        ]

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.FAILED
        assert result.message == "reconciliation failed: kustomize build failed"

    def test_in_progress_keeps_polling(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.side_effect = [
            flux_object(handled="old"),
            flux_object(handled="new", ready="Unknown"),
            flux_object(handled="new"),
        ]

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.succeeded
        assert len(clock.sleeps) == 1

    def test_suspended_object_is_rejected(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object(
            suspend=True
        )

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.FAILED
        assert result.message == "resource is suspended"
        mock_k8s_client.custom_objects.patch_namespaced_custom_object.assert_not_called()

    def test_not_found(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.side_effect = ApiException(
            status=404, reason="Not Found"
        )

        result = operations.execute("reconcile", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.FAILED
        assert result.message == "Kustomization 'apps' not found in namespace 'flux-system'"

    def test_cancelled_while_polling(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object(
            handled="old"
        )
        cancel = threading.Event()
        cancel.set()

        result = operations.execute("reconcile", "ks", "flux-system", "apps", cancel=cancel)

        assert result.phase is OperationPhase.FAILED
        assert result.message == "Operation cancelled"
        mock_k8s_client.custom_objects.patch_namespaced_custom_object.assert_called_once()


@pytest.mark.unit
@pytest.mark.kubernetes
class TestConflicts:
    """Tests for optimistic-concurrency retries."""

    def test_conflict_rereads_and_retries(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.side_effect = [
            flux_object(resource_version="1"),
            flux_object(resource_version="2"),
        ]
        custom.patch_namespaced_custom_object.side_effect = [conflict(), {}]

        result = operations.execute("suspend", "ks", "flux-system", "apps")

        assert result.succeeded
        assert result.message == "Kustomization suspended"
        bodies = [c.args[5] for c in custom.patch_namespaced_custom_object.call_args_list]
        assert [b["metadata"]["resourceVersion"] for b in bodies] == ["1", "2"]
        assert all(b["spec"] == {"suspend": True} for b in bodies)

    def test_conflict_budget_exhausted(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.return_value = flux_object()
        custom.patch_namespaced_custom_object.side_effect = conflict()

        result = operations.execute("suspend", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.FAILED
        assert "modified concurrently" in result.message
        assert custom.patch_namespaced_custom_object.call_count == 4

    def test_other_errors_are_not_retried(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.return_value = flux_object()
        custom.patch_namespaced_custom_object.side_effect = ApiException(
            status=422, reason="Unprocessable"
        )

        result = operations.execute("suspend", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.FAILED
        assert custom.patch_namespaced_custom_object.call_count == 1


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSuspendResume:
    """Tests for suspend and resume."""

    def test_suspend_does_not_poll(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object()

        assert operations.suspend(KUSTOMIZATION, "flux-system", "apps") == (
            "Kustomization suspended"
        )
        assert clock.sleeps == []
        assert mock_k8s_client.custom_objects.get_namespaced_custom_object.call_count == 1

    def test_resume_waits_for_ready(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        custom = mock_k8s_client.custom_objects
        custom.get_namespaced_custom_object.side_effect = [
            flux_object(suspend=True),
            flux_object(generation=2, observed=1),
            flux_object(generation=2, observed=2, revision="main@sha1:123"),
        ]

        result = operations.execute("resume", "ks", "flux-system", "apps")

        assert result.succeeded
        assert result.message == "applied revision main@sha1:123"
        assert clock.sleeps == [2.0]
        body = custom.patch_namespaced_custom_object.call_args.args[5]
        assert body["spec"] == {"suspend": False}

    def test_resume_failure(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.side_effect = [
            flux_object(suspend=True),
            flux_object(ready="False", message="source not found"),
        ]

        result = operations.execute("resume", "ks", "flux-system", "apps")

        assert result.phase is OperationPhase.FAILED
        assert result.message == "source not found"

    def test_static_kind_resumes_without_readiness(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
        clock: FakeClock,
    ) -> None:
        static = FluxKind(
            "Kustomization",
            KUSTOMIZE_GROUP,
            KUSTOMIZE_VERSION,
            KUSTOMIZATION_PLURAL,
            "applied",
            lambda obj: "static",
            readiness=ReadinessVariant.STATIC,
        )
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object(
            ready=None
        )

        result = operations.execute("resume", static, "flux-system", "apps")

        assert result.succeeded
        assert result.message == "applied revision static"
        assert clock.sleeps == []


@pytest.mark.unit
@pytest.mark.kubernetes
class TestExecute:
    """Tests for FluxOperations.execute argument handling."""

    def test_unknown_operation(self, operations: FluxOperations) -> None:
        with pytest.raises(ValueError):
            operations.execute("restart", "ks", "flux-system", "apps")

    def test_unknown_kind(self, operations: FluxOperations) -> None:
        with pytest.raises(KeyError):
            operations.execute("reconcile", "Widget", "flux-system", "apps")

    def test_resolve_namespace(self, operations: FluxOperations) -> None:
        assert operations.resolve_namespace(None) == "flux-system"
        assert operations.resolve_namespace("apps") == "apps"

    def test_result_fields(
        self,
        operations: FluxOperations,
        mock_k8s_client: MagicMock,
    ) -> None:
        mock_k8s_client.custom_objects.get_namespaced_custom_object.return_value = flux_object()

        result = operations.execute("suspend", "kustomization", "apps", "web")

        assert result.model_dump(mode="json") == {
            "operation": "suspend",
            "kind": "Kustomization",
            "namespace": "apps",
            "name": "web",
            "phase": "Succeeded",
            "message": "Kustomization suspended",
        }
