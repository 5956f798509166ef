"""Exception taxonomy for deployment workflows.

Precondition errors abort a run before anything is mutated.  Operational
errors (pull, start, certificate) abort the remaining steps of one service or
workflow.  Expected absences (nothing to stop, nothing to remove, image
already current) are never raised; they are logged as warnings.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from logzai_deploy.replacer import ReplacementOutcome


class DeployError(Exception):
    """Base class for every error raised by logzai_deploy."""


class PreconditionError(DeployError):
    """A required tool, file, or input is missing; nothing was changed."""


class PrerequisiteMissingError(PreconditionError):
    """A required executable or daemon is not available."""


class UnknownServiceError(PreconditionError):
    """The requested logical service name is not in the catalog."""

    def __init__(self, name: str, known: list[str]) -> None:
        self.name = name
        self.known = known
        super().__init__(f"Unknown service: {name!r} (expected one of: {', '.join(known)})")


class PullFailedError(DeployError):
    """Pulling an image failed; the running container was not touched."""

    def __init__(self, ref: str, reason: str = "") -> None:
        self.ref = ref
        self.reason = reason
        message = f"Failed to pull image {ref}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StartFailedError(DeployError):
    """Starting or recreating a service failed after its container was removed."""

    def __init__(self, service: str, outcome: ReplacementOutcome | None = None) -> None:
        self.service = service
        self.outcome = outcome
        super().__init__(f"Failed to start service {service}")


class CertificateError(DeployError):
    """The certificate authority did not issue a certificate."""


class ProvisioningCancelled(DeployError):
    """The operator declined to continue the HTTPS workflow."""
