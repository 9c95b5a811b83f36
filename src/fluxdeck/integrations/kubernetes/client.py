"""Kubernetes API client wrapper.

fluxdeck talks to four API groups: core (Services, Pods, Events), apps
(Deployments), networking (Ingresses) and custom objects (every Flux kind).
The wrapper loads kubeconfig once, builds each group on first use, and turns
API failures into the ``KubernetesError`` family.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from fluxdeck.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesNotFoundError,
    KubernetesValidationError,
)

if TYPE_CHECKING:
    from kubernetes.client import AppsV1Api, CoreV1Api, CustomObjectsApi, NetworkingV1Api
    from kubernetes.watch import Watch

    from fluxdeck.integrations.kubernetes.config import FluxdeckConfig

logger = structlog.get_logger()

# attribute name -> kubernetes.client class
API_GROUPS = {
    "core_v1": "CoreV1Api",
    "apps_v1": "AppsV1Api",
    "networking_v1": "NetworkingV1Api",
    "custom_objects": "CustomObjectsApi",
}

TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})


def api_status_message(e: Any) -> str | None:
    """The ``message`` of the ``Status`` object in an ApiException body."""
    body = getattr(e, "body", None)
    if not body:
        return None
    try:
        status = json.loads(body)
    except (TypeError, ValueError):
        return None
    if isinstance(status, dict):
        return status.get("message") or None
    return None


def is_transient(error: BaseException) -> bool:
    """Whether a translated error is worth retrying."""
    if isinstance(error, KubernetesConnectionError):
        return True
    return isinstance(error, KubernetesError) and error.status_code in TRANSIENT_STATUS_CODES


class KubernetesClient:
    """Kubernetes API client.

    Loads kubeconfig (or in-cluster config) for the active cluster, then
    hands out cached API group instances. A fresh ``Watch`` is created per
    stream because a ``Watch`` cannot be shared between threads.

    Example:
        ```python
        with KubernetesClient(FluxdeckConfig.from_env()) as client:
            client.custom_objects.list_cluster_custom_object(
                "kustomize.toolkit.fluxcd.io", "v1", "kustomizations"
            )
        ```
    """

    def __init__(self, config: FluxdeckConfig) -> None:
        self._config = config
        self._retries = config.defaults.retry_attempts
        self._context: str | None = None
        self._apis: dict[str, Any] = {}

        self._load_config()

        logger.info(
            "kubernetes_client_initialized",
            context=self._context,
            default_namespace=config.active_namespace,
            flux_namespace=config.flux_namespace,
        )

    def _load_config(self) -> None:
        from kubernetes import config
        from kubernetes.config import ConfigException

        context = self._config.active_context
        kubeconfig = self._config.active_kubeconfig

        try:
            config.load_kube_config(config_file=kubeconfig, context=context)
            self._context = context
            logger.debug("loaded_kubeconfig", context=context, kubeconfig=kubeconfig)
        except ConfigException:
            try:
                config.load_incluster_config()
            except ConfigException as e:
                raise KubernetesConnectionError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e
            self._context = "in-cluster"
            logger.debug("loaded_incluster_config")

        self._apis.clear()

    # =========================================================================
    # API Groups
    # =========================================================================

    def _api(self, attr: str) -> Any:
        api = self._apis.get(attr)
        if api is None:
            import kubernetes.client

            api = getattr(kubernetes.client, API_GROUPS[attr])()
            self._apis[attr] = api
        return api

    @property
    def core_v1(self) -> CoreV1Api:
        return self._api("core_v1")

    @property
    def apps_v1(self) -> AppsV1Api:
        return self._api("apps_v1")

    @property
    def networking_v1(self) -> NetworkingV1Api:
        return self._api("networking_v1")

    @property
    def custom_objects(self) -> CustomObjectsApi:
        return self._api("custom_objects")

    def new_watch(self) -> Watch:
        from kubernetes.watch import Watch

        return Watch()

    @property
    def context(self) -> str:
        """Loaded kubeconfig context, ``in-cluster``, or ``unknown``."""
        return self._context or "unknown"

    @property
    def default_namespace(self) -> str:
        return self._config.active_namespace

    @property
    def flux_namespace(self) -> str:
        """Namespace the Flux controllers run in."""
        return self._config.flux_namespace

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate an API or transport failure to a ``KubernetesError``.

        The server's ``Status`` message is preferred over the HTTP reason
        where the body carries one.

        Args:
            e: The raised exception.
            resource_type: Kind being operated on.
            resource_name: Name of the object.
            namespace: Namespace of the object.

        Returns:
            The matching ``KubernetesError`` subclass. ``KubernetesError``
            instances are returned unchanged.
        """
        from kubernetes.client import ApiException
        from urllib3.exceptions import HTTPError

        if isinstance(e, KubernetesError):
            return e

        if isinstance(e, HTTPError):
            return KubernetesConnectionError(
                message=f"Kubernetes API unreachable: {e}",
                original_error=e,
            )

        target = {
            "resource_type": resource_type,
            "resource_name": resource_name,
            "namespace": namespace,
        }

        if not isinstance(e, ApiException):
            return KubernetesError(message=str(e), **target)

        status = e.status
        detail = api_status_message(e) or e.reason

        if status in (401, 403):
            return KubernetesAuthError(
                message=detail or "Authentication/authorization failed",
                status_code=status,
                reason=e.reason,
            )
        if status == 404:
            return KubernetesNotFoundError(**target)
        if status == 409:
            return KubernetesConflictError(**target)
        if status in (400, 422):
            return KubernetesValidationError(
                message=detail or "Validation failed",
                status_code=status,
            )
        return KubernetesError(
            message=detail or f"Kubernetes API error: {status}",
            status_code=status,
            **target,
        )

    def make_retry_decorator(self) -> Any:
        """Retry transient failures with exponential backoff.

        Connection errors and 429/502/503/504 responses are retried up to
        ``defaults.retry_attempts`` times; everything else surfaces at once.
        """
        return retry(
            retry=retry_if_exception(is_transient),
            stop=stop_after_attempt(self._retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        self._apis.clear()
        logger.debug("kubernetes_client_closed", context=self._context)

    def __enter__(self) -> KubernetesClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
