"""Service replacement: stop, remove, and recreate one compose service.

Lifecycle for one service:
1. Pull the image and compare identifiers (``images.diff_image``)
2. Stop the running container (absence is a warning)
3. Remove the stopped container (absence is a warning)
4. Remove the superseded image (failure is a warning)
5. Start / force-recreate the service (failure is fatal for that service)
6. Confirm the container is running after a short settle delay

Services are replaced independently; a bulk run records each failure and
moves on to the next service.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from logzai_deploy.errors import DeployError, PullFailedError, StartFailedError
from logzai_deploy.images import diff_image
from logzai_deploy.logging import get_logger
from logzai_deploy.runtime import ContainerRuntime
from logzai_deploy.services import ServiceDescriptor

log = get_logger("logzai_deploy.replacer")


@dataclass
class ReplacementOutcome:
    """Result of replacing one service."""

    service: str
    stopped: bool = False
    removed: bool = False
    started: bool = False
    image_changed: bool = False
    old_image_removed: bool = False
    running_after_start: bool | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.started and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "stopped": self.stopped,
            "removed": self.removed,
            "started": self.started,
            "image_changed": self.image_changed,
            "old_image_removed": self.old_image_removed,
            "running_after_start": self.running_after_start,
            "error": self.error,
        }


@dataclass
class ServiceResult:
    """One entry of a bulk update report."""

    service: str
    status: str  # "success" or "failed"
    outcome: ReplacementOutcome | None = None
    error: str | None = None


@dataclass
class UpdateReport:
    """Aggregated results of updating one or more services."""

    results: list[ServiceResult] = field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [r.service for r in self.results if r.status != "success"]

    @property
    def succeeded(self) -> list[str]:
        return [r.service for r in self.results if r.status == "success"]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def partial_failure(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)


def replace_service(
    runtime: ContainerRuntime,
    descriptor: ServiceDescriptor,
    force_recreate: bool = True,
    *,
    pull: bool = True,
    settle_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ReplacementOutcome:
    """Replace the running container of ``descriptor`` with its current image.

    Raises:
        PullFailedError: the pull failed; the container was left untouched.
        StartFailedError: the service could not be started after removal.
    """
    outcome = ReplacementOutcome(service=descriptor.name)
    bound = log.bind(service=descriptor.name, compose_service=descriptor.compose_service)

    old_image: str | None = None
    if pull:
        diff = diff_image(runtime, descriptor.image)
        outcome.image_changed = diff.changed
        old_image = diff.old_image_to_remove

    bound.info("container_stopping")
    outcome.stopped = runtime.stop(descriptor.compose_service)
    if outcome.stopped:
        bound.info("container_stopped")
    else:
        bound.warning("container_not_running")

    outcome.removed = runtime.remove(descriptor.compose_service)
    if outcome.removed:
        bound.info("container_removed")
    else:
        bound.warning("container_not_found")

    if old_image:
        outcome.old_image_removed = runtime.remove_image(old_image)
        if outcome.old_image_removed:
            bound.info("old_image_removed", image_id=old_image)
        else:
            bound.warning("old_image_in_use", image_id=old_image)

    bound.info("service_starting", force_recreate=force_recreate)
    if not runtime.start(descriptor.compose_service, force_recreate=force_recreate):
        outcome.error = "start failed"
        bound.error("service_start_failed")
        raise StartFailedError(descriptor.name, outcome)
    outcome.started = True
    bound.info("service_started")

    if settle_seconds > 0:
        sleep(settle_seconds)
    outcome.running_after_start = runtime.is_running(descriptor.container_name)
    if outcome.running_after_start:
        bound.info("service_running", container=descriptor.container_name)
    else:
        bound.warning(
            "service_not_healthy_yet",
            container=descriptor.container_name,
            hint=f"docker compose logs -f {descriptor.compose_service}",
        )
    return outcome


def restart_service(
    runtime: ContainerRuntime,
    descriptor: ServiceDescriptor,
    *,
    settle_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ReplacementOutcome:
    """Recreate a service from its current local image without pulling."""
    return replace_service(
        runtime,
        descriptor,
        force_recreate=False,
        pull=False,
        settle_seconds=settle_seconds,
        sleep=sleep,
    )


def update_services(
    runtime: ContainerRuntime,
    descriptors: Iterable[ServiceDescriptor],
    force_recreate: bool = True,
    *,
    settle_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> UpdateReport:
    """Update every descriptor in order, recording failures without stopping."""
    report = UpdateReport()
    for descriptor in descriptors:
        try:
            outcome = replace_service(
                runtime,
                descriptor,
                force_recreate,
                settle_seconds=settle_seconds,
                sleep=sleep,
            )
        except PullFailedError as exc:
            log.error("service_update_aborted", service=descriptor.name, error=str(exc))
            report.results.append(
                ServiceResult(service=descriptor.name, status="failed", error=str(exc))
            )
            continue
        except StartFailedError as exc:
            report.results.append(
                ServiceResult(
                    service=descriptor.name,
                    status="failed",
                    outcome=exc.outcome,
                    error=str(exc),
                )
            )
            continue
        except DeployError as exc:
            log.error("service_update_failed", service=descriptor.name, error=str(exc))
            report.results.append(
                ServiceResult(service=descriptor.name, status="failed", error=str(exc))
            )
            continue

        report.results.append(
            ServiceResult(service=descriptor.name, status="success", outcome=outcome)
        )
    return report
