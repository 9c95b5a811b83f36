"""Unit tests for K8sBaseManager."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from fluxdeck.integrations.kubernetes.exceptions import (
    KubernetesConnectionError,
    KubernetesNotFoundError,
)
from fluxdeck.services.kubernetes.base import K8sBaseManager


class EventLikeManager(K8sBaseManager):
    _entity_name = "event"


@pytest.mark.unit
@pytest.mark.kubernetes
class TestK8sBaseManager:
    """Tests for K8sBaseManager base class."""

    def test_init(self, mock_k8s_client: MagicMock) -> None:
        manager = EventLikeManager(mock_k8s_client)

        assert manager._client is mock_k8s_client
        assert manager._log is not None

    def test_api_call_returns_result(self, mock_k8s_client: MagicMock) -> None:
        """A successful call passes its result through."""
        manager = EventLikeManager(mock_k8s_client)

        assert manager._api_call(lambda: 42) == 42
        mock_k8s_client.make_retry_decorator.assert_called_once()

    def test_api_call_translates_errors(self, mock_k8s_client: MagicMock) -> None:
        """Errors are translated, labelled and chained to the original."""
        original = ApiException(status=404, reason="Not Found")

        def call() -> None:
            raise original

        with pytest.raises(KubernetesNotFoundError) as exc_info:
            EventLikeManager(mock_k8s_client)._api_call(call, "Pod", "web", "default")

        assert exc_info.value.__cause__ is original
        assert "Pod 'web' not found in namespace 'default'" in str(exc_info.value)

    def test_api_call_retries_connection_errors(self, mock_k8s_client: MagicMock) -> None:
        """The client's retry policy sees translated connection errors."""
        mock_k8s_client.make_retry_decorator.return_value = retry(
            retry=retry_if_exception_type(KubernetesConnectionError),
            stop=stop_after_attempt(3),
            reraise=True,
        )
        call = MagicMock(side_effect=[KubernetesConnectionError("down"), "ok"])

        assert EventLikeManager(mock_k8s_client)._api_call(call) == "ok"
        assert call.call_count == 2
