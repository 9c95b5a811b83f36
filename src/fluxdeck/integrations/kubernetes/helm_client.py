"""Read access to Helm's release storage through the ``helm`` binary.

helm-controller installs charts with the Helm SDK, so the revisions it
stores are visible to ``helm history`` and ``helm get manifest`` like any
other release.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path

import structlog

from fluxdeck.integrations.kubernetes.exceptions import KubernetesError
from fluxdeck.integrations.kubernetes.models.helm import HelmReleaseRecord, HelmRevision

logger = structlog.get_logger()

HELM_TIMEOUT_SECONDS = 30
MAX_REVISIONS = 10
INSTALL_URL = "https://helm.sh/docs/intro/install/"


class HelmError(KubernetesError):
    """helm could not be run, or did not finish in time."""

    def __init__(self, message: str, stderr: str | None = None) -> None:
        super().__init__(message=message)
        self.stderr = stderr


class HelmBinaryNotFoundError(HelmError):
    def __init__(self, searched: str = "PATH") -> None:
        super().__init__(f"helm binary not found in {searched}. Install from: {INSTALL_URL}")


class HelmCommandError(HelmError):
    """helm exited non-zero."""

    @property
    def release_not_found(self) -> bool:
        return "not found" in (self.stderr or "").lower()


def locate_helm(binary_path: str | None = None) -> str:
    """Absolute path of the helm binary, explicit or from PATH."""
    if binary_path is None:
        found = shutil.which("helm")
        if found is None:
            raise HelmBinaryNotFoundError()
        return found
    path = Path(binary_path)
    if not path.exists():
        raise HelmBinaryNotFoundError(binary_path)
    return str(path.resolve())


class HelmClient:
    """Runs read-only helm subcommands and parses their output."""

    def __init__(self, binary_path: str | None = None) -> None:
        self._binary = locate_helm(binary_path)
        self._log = logger.bind(binary=self._binary)
        self._log.debug("helm_client_initialized")

    def _helm(self, *args: str, namespace: str | None = None) -> str:
        """stdout of ``helm <args> [--namespace ns]``.

        Raises:
            HelmCommandError: helm exited non-zero.
            HelmError: helm ran longer than ``HELM_TIMEOUT_SECONDS``.
        """
        argv = [*args, "--namespace", namespace] if namespace else list(args)
        self._log.debug("running_helm_command", args=argv)
        try:
            completed = subprocess.run(
                [self._binary, *argv],
                capture_output=True,
                text=True,
                check=True,
                timeout=HELM_TIMEOUT_SECONDS,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise HelmCommandError(
                f"Helm command failed: {stderr or f'exit code {e.returncode}'}",
                stderr=e.stderr,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise HelmError(f"Helm command timed out after {HELM_TIMEOUT_SECONDS}s") from e
        return completed.stdout

    def history(
        self, release: str, namespace: str | None = None, max_revisions: int = MAX_REVISIONS
    ) -> list[HelmRevision]:
        """Stored revisions of ``release``, oldest first."""
        out = self._helm(
            "history", release, "--output", "json", "--max", str(max_revisions), namespace=namespace
        )
        return [HelmRevision.from_json(entry) for entry in json.loads(out.strip() or "[]")]

    def manifest(self, release: str, revision: int, namespace: str | None = None) -> str:
        """Rendered manifest of one stored revision."""
        return self._helm(
            "get", "manifest", release, "--revision", str(revision), namespace=namespace
        )

    def _stored_revisions(self, namespace: str, release: str) -> list[HelmRevision]:
        """``history`` with an unknown release read as no revisions."""
        try:
            return self.history(release, namespace)
        except HelmCommandError as e:
            if e.release_not_found:
                self._log.debug("helm_release_not_stored", release=release, namespace=namespace)
                return []
            raise

    def _record(self, namespace: str, release: str, rev: HelmRevision) -> HelmReleaseRecord:
        return HelmReleaseRecord(
            name=release,
            namespace=namespace,
            version=rev.revision,
            status=rev.status,
            manifest=self.manifest(release, rev.revision, namespace),
        )

    def release_history(self, namespace: str, release: str) -> list[HelmReleaseRecord]:
        """Each stored revision of ``release`` paired with its manifest.

        A release helm does not know about yields an empty list; any other
        helm failure is raised.
        """
        revisions = self._stored_revisions(namespace, release)
        return [self._record(namespace, release, rev) for rev in revisions]

    def latest_release(self, namespace: str, release: str) -> HelmReleaseRecord | None:
        """The highest stored revision of ``release`` with its manifest.

        Only that revision's manifest is fetched. None when helm has no
        revision stored for the release.
        """
        revisions = self._stored_revisions(namespace, release)
        if not revisions:
            return None
        return self._record(namespace, release, max(revisions, key=lambda r: r.revision))
