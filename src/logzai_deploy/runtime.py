"""Container runtime adapter.

Everything the orchestrator asks of the container engine goes through the
``ContainerRuntime`` protocol.  ``ComposeRuntime`` implements it by shelling
out to the docker CLI and docker compose (v2 plugin, falling back to the
standalone v1 binary).  All subprocess calls are confined to this module.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from logzai_deploy.constants import COMMAND_TIMEOUT_SECONDS, PROBE_TIMEOUT_SECONDS
from logzai_deploy.errors import PrerequisiteMissingError
from logzai_deploy.logging import get_logger

log = get_logger("logzai_deploy.runtime")


@runtime_checkable
class ContainerRuntime(Protocol):
    """Operations the orchestrator needs from a container engine."""

    def stop(self, service: str) -> bool: ...

    def remove(self, service: str) -> bool: ...

    def pull(self, ref: str) -> bool: ...

    def image_id(self, ref: str) -> str: ...

    def remove_image(self, image_id: str) -> bool: ...

    def start(self, service: str, force_recreate: bool = False) -> bool: ...

    def up_all(self) -> bool: ...

    def is_running(self, container_name: str) -> bool: ...

    def exec(self, container_name: str, command: Sequence[str]) -> int: ...


def detect_compose_command() -> list[str] | None:
    """Return the compose invocation available on this host, or None."""
    if shutil.which("docker") is not None:
        try:
            proc = subprocess.run(
                ["docker", "compose", "version"],
                capture_output=True,
                timeout=30,
                check=False,
            )
            if proc.returncode == 0:
                return ["docker", "compose"]
        except (OSError, subprocess.TimeoutExpired):
            pass
    if shutil.which("docker-compose") is not None:
        return ["docker-compose"]
    return None


def check_prerequisites() -> list[str]:
    """Verify docker, its daemon, and compose are usable.

    Returns the compose command to use.

    Raises:
        PrerequisiteMissingError: when any of them is missing.
    """
    if shutil.which("docker") is None:
        raise PrerequisiteMissingError("Docker is not installed")

    try:
        info = subprocess.run(["docker", "info"], capture_output=True, timeout=30, check=False)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise PrerequisiteMissingError(f"Docker daemon is not reachable: {exc}") from exc
    if info.returncode != 0:
        raise PrerequisiteMissingError("Docker daemon is not running. Please start Docker first.")

    compose = detect_compose_command()
    if compose is None:
        raise PrerequisiteMissingError("Docker Compose is not available")

    log.debug("prerequisites_ok", compose=" ".join(compose))
    return compose


class ComposeRuntime:
    """``ContainerRuntime`` backed by the docker CLI and docker compose.

    ``timeout`` bounds compose and image operations.  ``probe_timeout`` bounds
    the inspect and exec calls made while polling readiness.
    """

    def __init__(
        self,
        project_dir: str = ".",
        compose_file: str = "docker-compose.yml",
        compose_cmd: Sequence[str] = ("docker", "compose"),
        timeout: int = COMMAND_TIMEOUT_SECONDS,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self._project_dir = project_dir
        self._compose_file = compose_file
        self._compose_cmd = list(compose_cmd)
        self._timeout = timeout
        self._probe_timeout = probe_timeout

    @property
    def compose_command(self) -> str:
        return " ".join(self._compose_cmd)

    @property
    def compose_file(self) -> Path:
        return Path(self._project_dir) / self._compose_file

    # ------------------------------------------------------------------
    # Compose operations
    # ------------------------------------------------------------------

    def stop(self, service: str) -> bool:
        return self._run_cmd(self._compose("stop", service)) is not None

    def remove(self, service: str) -> bool:
        return self._run_cmd(self._compose("rm", "-f", service)) is not None

    def start(self, service: str, force_recreate: bool = False) -> bool:
        args = ["up", "-d"]
        if force_recreate:
            args.append("--force-recreate")
        args.append(service)
        return self._run_cmd(self._compose(*args)) is not None

    def up_all(self) -> bool:
        return self._run_cmd(self._compose("up", "-d")) is not None

    # ------------------------------------------------------------------
    # Image and container operations
    # ------------------------------------------------------------------

    def pull(self, ref: str) -> bool:
        return self._run_cmd(["docker", "pull", ref]) is not None

    def image_id(self, ref: str) -> str:
        output = self._run_cmd(
            ["docker", "image", "inspect", "--format", "{{.Id}}", ref],
            quiet=True,
        )
        if output is None:
            return ""
        return output.strip().splitlines()[0] if output.strip() else ""

    def remove_image(self, image_id: str) -> bool:
        return self._run_cmd(["docker", "rmi", image_id]) is not None

    def is_running(self, container_name: str) -> bool:
        output = self._run_cmd(
            ["docker", "inspect", "--format", "{{.State.Running}}", container_name],
            quiet=True,
            timeout=self._probe_timeout,
        )
        return output is not None and output.strip().lower() == "true"

    def exec(self, container_name: str, command: Sequence[str]) -> int:
        proc = self._run(
            ["docker", "exec", container_name, *command],
            timeout=self._probe_timeout,
            quiet=True,
        )
        return -1 if proc is None else proc.returncode

    # ------------------------------------------------------------------
    # Subprocess helpers
    # ------------------------------------------------------------------

    def _compose(self, *args: str) -> list[str]:
        return [*self._compose_cmd, "-f", self._compose_file, *args]

    def _run(
        self, args: list[str], timeout: float | None = None, quiet: bool = False
    ) -> subprocess.CompletedProcess[str] | None:
        """Run a command and return the completed process, or None if it could not run."""
        timeout = timeout or self._timeout
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                cwd=self._project_dir,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            log.warning("runtime_cmd_timeout", cmd=" ".join(args), timeout=timeout)
            return None
        except OSError as exc:
            if not quiet:
                log.warning("runtime_cmd_error", cmd=" ".join(args), error=str(exc))
            return None

    def _run_cmd(
        self, args: list[str], timeout: float | None = None, quiet: bool = False
    ) -> str | None:
        """Run a command and return stdout, or None on failure."""
        proc = self._run(args, timeout=timeout, quiet=quiet)
        if proc is None:
            return None
        if proc.returncode != 0:
            if not quiet:
                log.debug(
                    "runtime_cmd_failed",
                    cmd=" ".join(args),
                    returncode=proc.returncode,
                    stderr=proc.stderr[:500],
                )
            return None
        return proc.stdout
