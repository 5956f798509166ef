"""Readiness polling across independently addressable services.

One bounded loop evaluates every check on every attempt.  The loop ends at
the first attempt on which all checks pass together, or after
``max_attempts``.  Each check's first success is reported once, as soon as it
happens, so the operator sees services come up one by one.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

import httpx

from logzai_deploy.constants import PROBE_TIMEOUT_SECONDS
from logzai_deploy.logging import get_logger
from logzai_deploy.runtime import ContainerRuntime

log = get_logger("logzai_deploy.readiness")


class Probe(ABC):
    """A way to test whether one service is live."""

    @abstractmethod
    def check(self, runtime: ContainerRuntime | None, client: httpx.Client) -> bool:
        """Return True when the service answers."""
        ...


@dataclass
class HttpProbe(Probe):
    """Ready when any candidate URL answers with a non-error status.

    When ``container_name`` is set, the container must be running before any
    URL is tried.
    """

    urls: Sequence[str]
    container_name: str | None = None

    def check(self, runtime: ContainerRuntime | None, client: httpx.Client) -> bool:
        if self.container_name and runtime is not None:
            if not runtime.is_running(self.container_name):
                return False
        for url in self.urls:
            try:
                resp = client.get(url)
            except httpx.HTTPError:
                continue
            if resp.status_code < 400:
                return True
        return False


@dataclass
class ExecProbe(Probe):
    """Ready when a command run inside the container exits with status 0."""

    container_name: str
    command: Sequence[str]

    def check(self, runtime: ContainerRuntime | None, client: httpx.Client) -> bool:
        if runtime is None:
            return False
        if not runtime.is_running(self.container_name):
            return False
        return runtime.exec(self.container_name, self.command) == 0


@dataclass
class ReadinessCheck:
    """One service to poll.  ``first_success_observed`` only ever goes False -> True."""

    name: str
    probe: Probe
    first_success_observed: bool = False


@dataclass
class ReadinessResult:
    """Outcome of a readiness wait."""

    all_ready: bool
    attempts: int
    first_success: dict[str, bool] = field(default_factory=dict)
    first_success_attempt: dict[str, int] = field(default_factory=dict)

    @property
    def pending(self) -> list[str]:
        return [name for name, seen in self.first_success.items() if not seen]


def _evaluate(
    check: ReadinessCheck, runtime: ContainerRuntime | None, http: httpx.Client
) -> bool:
    try:
        return bool(check.probe.check(runtime, http))
    except Exception as exc:
        log.debug("readiness_probe_error", service=check.name, error=str(exc))
        return False


def await_readiness(
    checks: Iterable[ReadinessCheck],
    max_attempts: int,
    interval_seconds: float,
    *,
    runtime: ContainerRuntime | None = None,
    client: httpx.Client | None = None,
    reported: dict[str, bool] | None = None,
    timeout_seconds: float = PROBE_TIMEOUT_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessResult:
    """Poll ``checks`` until all pass on the same attempt or the budget runs out.

    Args:
        checks: Services to poll; each is evaluated on every attempt.
        max_attempts: Upper bound on polling attempts (must be >= 1).
        interval_seconds: Delay between attempts.
        runtime: Container runtime used by container-aware probes.
        client: HTTP client for HTTP probes; one is created when omitted.
        reported: First-success map, updated in place and returned in the result.
        timeout_seconds: Per-request timeout for the client created here.
        sleep: Sleep function, replaceable in tests.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    checks = list(checks)
    if reported is None:
        reported = {}
    for check in checks:
        reported.setdefault(check.name, check.first_success_observed)

    first_attempt: dict[str, int] = {}
    owns_client = client is None
    http = client if client is not None else httpx.Client(timeout=timeout_seconds)

    all_ready = False
    attempt = 0
    try:
        while attempt < max_attempts:
            attempt += 1
            ready_now = True
            for check in checks:
                if not _evaluate(check, runtime, http):
                    ready_now = False
                    continue
                if not reported[check.name]:
                    reported[check.name] = True
                    check.first_success_observed = True
                    first_attempt[check.name] = attempt
                    log.info("service_healthy", service=check.name, attempt=attempt)

            if ready_now:
                all_ready = True
                break

            log.debug("readiness_attempt_incomplete", attempt=attempt, max_attempts=max_attempts)
            if attempt < max_attempts:
                sleep(interval_seconds)
    finally:
        if owns_client:
            http.close()

    return ReadinessResult(
        all_ready=all_ready,
        attempts=attempt,
        first_success=reported,
        first_success_attempt=first_attempt,
    )


def default_checks(host: str = "localhost") -> list[ReadinessCheck]:
    """Readiness checks for a standard single-host LogzAI stack."""
    return [
        ReadinessCheck(
            "api",
            HttpProbe(
                [f"http://{host}:8000/healthz", f"http://{host}:8000"],
                container_name="logzai-api",
            ),
        ),
        ReadinessCheck(
            "ingestor",
            HttpProbe(
                [f"http://{host}:10000/healthz", f"http://{host}:10000"],
                container_name="logzai-ingestor",
            ),
        ),
        ReadinessCheck("redis", ExecProbe("logzai-redis", ["redis-cli", "ping"])),
        ReadinessCheck(
            "frontend",
            HttpProbe([f"http://{host}:4000/healthz"], container_name="logzai-frontend"),
        ),
        ReadinessCheck(
            "gateway",
            HttpProbe(
                [f"http://{host}:80/healthz", f"http://{host}/healthz"],
                container_name="logzai-gateway",
            ),
        ),
    ]


def report_readiness(result: ReadinessResult, compose_command: str = "docker compose") -> None:
    """Log the final verdict; a timeout is a warning with follow-up guidance."""
    if result.all_ready:
        log.info("all_services_ready", attempts=result.attempts)
        return
    log.warning(
        "services_not_ready",
        attempts=result.attempts,
        pending=result.pending,
        detail="Containers are starting, but health checks haven't passed yet",
    )
    log.info("check_status", command=f"{compose_command} ps")
    log.info("view_logs", command=f"{compose_command} logs -f")
