"""Unit tests for HelmClient."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from fluxdeck.integrations.kubernetes.helm_client import (
    HelmBinaryNotFoundError,
    HelmClient,
    HelmCommandError,
    HelmError,
    locate_helm,
)
from fluxdeck.integrations.kubernetes.models.helm import HelmReleaseRecord, HelmRevision


@pytest.fixture
def helm_client() -> HelmClient:
    """Create a HelmClient with mocked binary detection."""
    with patch("shutil.which", return_value="/usr/local/bin/helm"):
        return HelmClient()


def completed(stdout: str) -> MagicMock:
    return MagicMock(stdout=stdout, stderr="", returncode=0)


def failed(stderr: str) -> subprocess.CalledProcessError:
    return subprocess.CalledProcessError(returncode=1, cmd=["helm"], stderr=stderr)


HISTORY = [
    {
        "revision": 1,
        "updated": "2026-01-01T00:00:00Z",
        "status": "superseded",
        "chart": "web-1.0.0",
        "app_version": "1.0",
        "description": "Install complete",
    },
    {
        "revision": 2,
        "updated": "2026-01-02T00:00:00Z",
        "status": "deployed",
        "chart": "web-1.1.0",
        "app_version": "1.1",
        "description": "Upgrade complete",
    },
]


@pytest.mark.unit
@pytest.mark.kubernetes
class TestLocateHelm:
    """Tests for binary discovery."""

    def test_from_path(self) -> None:
        with patch("shutil.which", return_value="/usr/local/bin/helm"):
            assert locate_helm() == "/usr/local/bin/helm"

    def test_missing_from_path(self) -> None:
        with patch("shutil.which", return_value=None), pytest.raises(HelmBinaryNotFoundError):
            HelmClient()

    def test_explicit_path(self, tmp_path: Path) -> None:
        fake_binary = tmp_path / "helm"
        fake_binary.touch()

        assert HelmClient(binary_path=str(fake_binary))._binary == str(fake_binary.resolve())

    def test_explicit_path_missing(self) -> None:
        with pytest.raises(HelmBinaryNotFoundError, match="/nonexistent/helm"):
            locate_helm("/nonexistent/helm")


@pytest.mark.unit
@pytest.mark.kubernetes
class TestHistory:
    """Tests for HelmClient.history and manifest."""

    @patch("subprocess.run")
    def test_history(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.return_value = completed(json.dumps(HISTORY))

        revisions = helm_client.history("web", "apps", max_revisions=5)

        assert revisions[1] == HelmRevision(
            revision=2,
            updated="2026-01-02T00:00:00Z",
            status="deployed",
            chart="web-1.1.0",
            app_version="1.1",
            description="Upgrade complete",
        )
        assert mock_run.call_args[0][0] == [
            "/usr/local/bin/helm",
            "history",
            "web",
            "--output",
            "json",
            "--max",
            "5",
            "--namespace",
            "apps",
        ]

    @patch("subprocess.run")
    def test_blank_output(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.return_value = completed("\n")

        assert helm_client.history("web") == []

    @patch("subprocess.run")
    def test_manifest(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.return_value = completed("kind: Service\n")

        assert helm_client.manifest("web", 2, "apps") == "kind: Service\n"
        assert mock_run.call_args[0][0][1:] == [
            "get",
            "manifest",
            "web",
            "--revision",
            "2",
            "--namespace",
            "apps",
        ]

    @patch("subprocess.run")
    def test_command_failure(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.side_effect = failed("boom\n")

        with pytest.raises(HelmCommandError, match="Helm command failed: boom"):
            helm_client.history("web")

    @patch("subprocess.run")
    def test_timeout(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["helm"], timeout=30)

        with pytest.raises(HelmError, match="timed out after 30s"):
            helm_client.history("web")


@pytest.mark.unit
@pytest.mark.kubernetes
class TestReleaseHistory:
    """Tests for HelmClient.release_history."""

    @patch("subprocess.run")
    def test_records_with_manifests(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        """Each revision is paired with its manifest."""
        mock_run.side_effect = [
            completed(json.dumps(HISTORY)),
            completed("rev1"),
            completed("rev2"),
        ]

        assert helm_client.release_history("apps", "web") == [
            HelmReleaseRecord(
                name="web", namespace="apps", version=1, status="superseded", manifest="rev1"
            ),
            HelmReleaseRecord(
                name="web", namespace="apps", version=2, status="deployed", manifest="rev2"
            ),
        ]

    @patch("subprocess.run")
    def test_unknown_release_is_empty(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.side_effect = failed("Error: release: not found")

        assert helm_client.release_history("apps", "web") == []

    @patch("subprocess.run")
    def test_other_failures_propagate(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.side_effect = failed("Error: Kubernetes cluster unreachable")

        with pytest.raises(HelmCommandError) as exc_info:
            helm_client.release_history("apps", "web")

        assert exc_info.value.release_not_found is False


@pytest.mark.unit
@pytest.mark.kubernetes
class TestLatestRelease:
    """Tests for HelmClient.latest_release."""

    @patch("subprocess.run")
    def test_fetches_only_highest_revision_manifest(
        self, mock_run: MagicMock, helm_client: HelmClient
    ) -> None:
        """One history call and one manifest call, for the highest revision."""
        mock_run.side_effect = [
            completed(json.dumps(list(reversed(HISTORY)))),
            completed("rev2"),
        ]

        assert helm_client.latest_release("apps", "web") == HelmReleaseRecord(
            name="web", namespace="apps", version=2, status="deployed", manifest="rev2"
        )
        assert mock_run.call_count == 2
        assert mock_run.call_args.args[0] == [
            "/usr/local/bin/helm",
            "get",
            "manifest",
            "web",
            "--revision",
            "2",
            "--namespace",
            "apps",
        ]

    @patch("subprocess.run")
    def test_unknown_release_is_none(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.side_effect = failed("Error: release: not found")

        assert helm_client.latest_release("apps", "web") is None

    @patch("subprocess.run")
    def test_empty_history_is_none(self, mock_run: MagicMock, helm_client: HelmClient) -> None:
        mock_run.return_value = completed("[]")

        assert helm_client.latest_release("apps", "web") is None
        mock_run.assert_called_once()
