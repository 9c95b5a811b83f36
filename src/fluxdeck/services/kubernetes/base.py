"""Shared plumbing for the managers that talk to the API server."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from fluxdeck.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

T = TypeVar("T")


class K8sBaseManager:
    """A client reference plus a logger bound to ``_entity_name``.

    API calls go through :meth:`_api_call` so every manager raises the same
    ``KubernetesError`` types and retries the same transient failures.
    """

    _entity_name: str = ""

    def __init__(self, client: KubernetesClient) -> None:
        self._client = client
        self._log = logger.bind(entity=self._entity_name)

    def _api_call(
        self,
        call: Callable[[], T],
        kind: str | None = None,
        name: str | None = None,
        namespace: str | None = None,
    ) -> T:
        """Invoke ``call`` under the client's retry policy.

        Failures are translated inside the retried function, so the policy
        decides on ``KubernetesError`` types rather than raw ApiExceptions.
        ``kind``, ``name`` and ``namespace`` label the translated error.
        """
        translate = self._client.translate_api_exception

        @self._client.make_retry_decorator()
        def attempt() -> T:
            try:
                return call()
            except Exception as e:
                raise translate(
                    e, resource_type=kind, resource_name=name, namespace=namespace
                ) from e

        return attempt()
