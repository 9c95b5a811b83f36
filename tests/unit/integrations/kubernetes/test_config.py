"""Unit tests for fluxdeck configuration models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from fluxdeck.integrations.kubernetes.config import (
    ClusterConfig,
    FluxdeckConfig,
    FluxOperationsConfig,
    KubernetesDefaultsConfig,
)


@pytest.mark.unit
@pytest.mark.kubernetes
class TestSections:
    """Test the individual configuration sections."""

    def test_cluster_defaults(self) -> None:
        config = ClusterConfig()
        assert config.context == ""
        assert config.namespace == "default"
        assert config.kubeconfig == str(Path("~/.kube/config").expanduser())

    def test_kubeconfig_path_expansion(self) -> None:
        config = ClusterConfig(kubeconfig="~/custom/config")
        assert config.kubeconfig == str(Path("~/custom/config").expanduser())

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            ClusterConfig(timeout=30)  # type: ignore[call-arg]

    def test_operation_defaults(self) -> None:
        ops = FluxOperationsConfig()
        assert (ops.poll_interval, ops.timeout, ops.conflict_attempts) == (2.0, 300.0, 4)
        assert KubernetesDefaultsConfig().retry_attempts == 3

    @pytest.mark.parametrize(
        ("model", "field"),
        [
            (FluxOperationsConfig, "poll_interval"),
            (FluxOperationsConfig, "timeout"),
            (FluxOperationsConfig, "conflict_attempts"),
            (KubernetesDefaultsConfig, "retry_attempts"),
        ],
    )
    def test_rejects_zero(self, model: type, field: str) -> None:
        with pytest.raises(ValidationError):
            model(**{field: 0})


@pytest.mark.unit
@pytest.mark.kubernetes
class TestActiveCluster:
    """Test which cluster the client connects to."""

    def test_nothing_configured(self) -> None:
        config = FluxdeckConfig()

        assert config.flux_namespace == "flux-system"
        assert config.cluster is None
        assert config.active_context is None
        assert config.active_kubeconfig is None
        assert config.active_namespace == "default"

    def test_named_cluster(self) -> None:
        config = FluxdeckConfig(
            clusters={
                "dev": ClusterConfig(context="kind-dev", namespace="dev"),
                "prod": ClusterConfig(context="gke-prod", namespace="prod", kubeconfig="/k"),
            },
            active_cluster="prod",
        )

        assert config.active_context == "gke-prod"
        assert config.active_namespace == "prod"
        assert config.active_kubeconfig == str(Path("/k").expanduser())

    def test_first_cluster_when_none_active(self) -> None:
        config = FluxdeckConfig(clusters={"dev": ClusterConfig(context="kind-dev")})

        assert config.active_context == "kind-dev"

    def test_unknown_active_cluster_is_raw_context(self) -> None:
        config = FluxdeckConfig(
            clusters={"dev": ClusterConfig(context="kind-dev")}, active_cluster="minikube"
        )

        assert config.active_context == "minikube"
        assert config.active_kubeconfig is None
        assert config.active_namespace == "default"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestFromEnv:
    """Test environment variable overrides."""

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLUXDECK_K8S_CONTEXT", "staging")
        monkeypatch.setenv("FLUXDECK_K8S_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("FLUXDECK_FLUX_NAMESPACE", "flux")
        monkeypatch.setenv("FLUXDECK_POLL_INTERVAL", "0.5")
        monkeypatch.setenv("FLUXDECK_RECONCILE_TIMEOUT", "60")

        config = FluxdeckConfig.from_env()

        assert config.active_cluster == "staging"
        assert config.defaults.retry_attempts == 5
        assert config.flux_namespace == "flux"
        assert config.operations.poll_interval == 0.5
        assert config.operations.timeout == 60.0

    def test_empty_variable_is_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLUXDECK_FLUX_NAMESPACE", "")

        assert FluxdeckConfig.from_env().flux_namespace == "flux-system"

    def test_overrides_base_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLUXDECK_K8S_NAMESPACE", "override")
        monkeypatch.setenv("FLUXDECK_K8S_KUBECONFIG", "/tmp/kubeconfig")
        base = {
            "clusters": {"dev": {"context": "kind-dev", "namespace": "dev"}},
            "operations": {"poll_interval": 1.0},
        }

        config = FluxdeckConfig.from_env(base)

        assert config.clusters["dev"].namespace == "override"
        assert config.clusters["dev"].kubeconfig == "/tmp/kubeconfig"
        assert config.operations.poll_interval == 1.0
        assert base["operations"] == {"poll_interval": 1.0}

    def test_invalid_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLUXDECK_RECONCILE_TIMEOUT", "0")

        with pytest.raises(ValidationError):
            FluxdeckConfig.from_env()
