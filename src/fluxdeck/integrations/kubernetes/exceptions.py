"""Errors raised by the Kubernetes and Flux layers.

Every error carries the object it concerns (kind, name, namespace) when one
is known, so the CLI can print ``[Kustomization/apps in flux-system]``
without re-deriving it. The Flux operation states (suspended, failed,
cancelled) share the same root, so a caller handles a failed reconcile and a
failed API call with a single ``except KubernetesError``.
"""

from __future__ import annotations

from typing import Any


def describe(
    resource_type: str | None,
    resource_name: str | None,
    namespace: str | None = None,
    outcome: str = "",
) -> str | None:
    """``"Kind 'name' <outcome> in namespace 'ns'"``; None without kind and name."""
    if not (resource_type and resource_name):
        return None
    parts = [f"{resource_type} '{resource_name}'"]
    if outcome:
        parts.append(outcome)
    if namespace:
        parts.append(f"in namespace '{namespace}'")
    return " ".join(parts)


class KubernetesError(Exception):
    """Root of every fluxdeck Kubernetes error.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status from the API server, if any.
        resource_type: Kind of the object involved.
        resource_name: Name of the object involved.
        namespace: Namespace of the object involved.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.resource_type = resource_type
        self.resource_name = resource_name
        self.namespace = namespace

    @property
    def location(self) -> str | None:
        """``Kind/name in namespace`` for the object involved."""
        if not (self.resource_type and self.resource_name):
            return None
        loc = f"{self.resource_type}/{self.resource_name}"
        return f"{loc} in {self.namespace}" if self.namespace else loc

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status: {self.status_code})")
        if self.location:
            parts.append(f"[{self.location}]")
        return " ".join(parts)


# =============================================================================
# API errors
# =============================================================================


class KubernetesConnectionError(KubernetesError):
    """The API server could not be reached or no cluster config was found."""

    def __init__(
        self,
        message: str = "Failed to connect to Kubernetes cluster",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message=message)
        self.original_error = original_error


class KubernetesAuthError(KubernetesError):
    """401 or 403 from the API server."""

    def __init__(
        self,
        message: str = "Kubernetes authentication/authorization failed",
        status_code: int | None = 401,
        reason: str | None = None,
    ) -> None:
        super().__init__(message=message, status_code=status_code)
        self.reason = reason


class KubernetesNotFoundError(KubernetesError):
    """404: the object (or its CRD) does not exist. Never retried."""

    def __init__(
        self,
        message: str = "Kubernetes resource not found",
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(
            message=describe(resource_type, resource_name, namespace, "not found") or message,
            status_code=404,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )


class KubernetesValidationError(KubernetesError):
    """400/422 from the API server, or input fluxdeck refuses to parse."""

    def __init__(
        self,
        message: str = "Invalid resource specification",
        validation_errors: dict[str, Any] | None = None,
        status_code: int | None = 422,
    ) -> None:
        super().__init__(message=message, status_code=status_code)
        self.validation_errors = validation_errors or {}


class KubernetesConflictError(KubernetesError):
    """409: the object changed between read and patch.

    Flux patches are retried on this error, so it only reaches the caller
    once the conflict attempts are used up.
    """

    def __init__(
        self,
        message: str = "Resource conflict",
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(
            message=describe(resource_type, resource_name, namespace, "was modified concurrently")
            or message,
            status_code=409,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )


class KubernetesTimeoutError(KubernetesError):
    """The readiness poll ran out of time before a terminal state."""

    def __init__(
        self,
        message: str = "Kubernetes operation timed out",
        timeout_seconds: float | None = None,
    ) -> None:
        if timeout_seconds:
            message = f"{message} (after {timeout_seconds:g}s)"
        super().__init__(message=message)
        self.timeout_seconds = timeout_seconds


# =============================================================================
# Flux operation errors
# =============================================================================


class InvalidStateError(KubernetesError):
    """The operation does not apply to the object's current state."""

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__(message, None, resource_type, resource_name, namespace)


class AlreadySuspendedError(InvalidStateError):
    """Reconcile requested for an object whose ``spec.suspend`` is true."""

    def __init__(
        self,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> None:
        super().__init__("resource is suspended", resource_type, resource_name, namespace)


class ReadinessFailedError(KubernetesError):
    """The controller finished and reported the object not ready."""

    def __init__(
        self,
        message: str,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message, None, resource_type, resource_name, namespace)
        self.reason = reason


class OperationCancelledError(KubernetesError):
    """The caller cancelled the operation while it waited for readiness."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message=message)


# =============================================================================
# Live state errors
# =============================================================================


class MalformedEventError(KubernetesError):
    """A watch event lacks what its handler needs.

    The store drops such events with a log line; readers never see them.
    """

    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message=message)
        self.payload = payload
