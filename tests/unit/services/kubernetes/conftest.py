"""Shared fixtures for Kubernetes service tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fluxdeck.integrations.kubernetes.client import KubernetesClient


@pytest.fixture
def mock_k8s_client() -> MagicMock:
    """Create a mock Kubernetes client with API sub-mocks.

    Retries are disabled and API errors go through the real translator, so
    managers see the same exception types they would against a cluster.
    """
    mock_client = MagicMock()
    mock_client.default_namespace = "default"
    mock_client.flux_namespace = "flux-system"
    mock_client.make_retry_decorator.return_value = lambda fn: fn
    mock_client.translate_api_exception.side_effect = KubernetesClient.translate_api_exception
    return mock_client
