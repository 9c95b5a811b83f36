"""Kubernetes integration - API client, Helm backend and configuration models."""

from fluxdeck.integrations.kubernetes.client import KubernetesClient
from fluxdeck.integrations.kubernetes.config import (
    ClusterConfig,
    FluxdeckConfig,
    FluxOperationsConfig,
    KubernetesDefaultsConfig,
)
from fluxdeck.integrations.kubernetes.exceptions import (
    AlreadySuspendedError,
    InvalidStateError,
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
    MalformedEventError,
    OperationCancelledError,
    ReadinessFailedError,
)

__all__ = [
    "AlreadySuspendedError",
    "ClusterConfig",
    "FluxOperationsConfig",
    "FluxdeckConfig",
    "InvalidStateError",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesDefaultsConfig",
    "KubernetesError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
    "MalformedEventError",
    "OperationCancelledError",
    "ReadinessFailedError",
]
