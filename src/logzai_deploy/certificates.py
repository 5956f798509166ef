"""HTTPS provisioning: obtain a Let's Encrypt certificate and switch the gateway.

Lifecycle (strictly ordered):
1. Check preconditions (template, compose file, running gateway, inputs)
2. Advisory DNS check (mismatch asks the operator, never aborts on its own)
3. Stop the gateway to free port 80 for the HTTP-01 challenge
4. Request the certificate (certbot standalone)
5. Rewrite the gateway config from the HTTPS template (old config backed up)
6. Back up the compose file; ask the operator to mount the certificates if needed
7. Bring the stack back up with HTTPS enabled

The gateway is restarted on every exit path after step 3, so a failed run
leaves it in the same running state it started in.
"""

from __future__ import annotations

import shutil
import socket
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

from logzai_deploy import gateway
from logzai_deploy.config import Settings
from logzai_deploy.constants import LETSENCRYPT_VOLUME, PUBLIC_IP_URLS
from logzai_deploy.errors import (
    CertificateError,
    DeployError,
    PreconditionError,
    PrerequisiteMissingError,
    ProvisioningCancelled,
    StartFailedError,
)
from logzai_deploy.logging import get_logger
from logzai_deploy.runtime import ContainerRuntime

log = get_logger("logzai_deploy.certificates")


class CertificateAuthority(Protocol):
    """Client able to obtain a certificate for a domain."""

    def is_available(self) -> bool: ...

    def obtain(self, domain: str, email: str) -> bool: ...


class CertbotAuthority:
    """Let's Encrypt through ``certbot certonly --standalone``.

    Standalone mode binds port 80 itself, so nothing else may hold it.
    """

    def __init__(self, binary: str = "certbot", use_sudo: bool = True, timeout: int = 300) -> None:
        self._binary = binary
        self._use_sudo = use_sudo
        self._timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None

    def command(self, domain: str, email: str) -> list[str]:
        cmd = [
            self._binary,
            "certonly",
            "--standalone",
            "--non-interactive",
            "--agree-tos",
            "--email",
            email,
            "-d",
            domain,
        ]
        if self._use_sudo:
            cmd.insert(0, "sudo")
        return cmd

    def obtain(self, domain: str, email: str) -> bool:
        cmd = self.command(domain, email)
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self._timeout, check=False
            )
        except subprocess.TimeoutExpired:
            log.error("certbot_timeout", domain=domain, timeout=self._timeout)
            return False
        except OSError as exc:
            log.error("certbot_error", domain=domain, error=str(exc))
            return False

        if proc.returncode != 0:
            log.error(
                "certbot_failed",
                domain=domain,
                returncode=proc.returncode,
                stderr=proc.stderr[-1000:],
            )
            return False
        return True


# ----------------------------------------------------------------------
# DNS helpers
# ----------------------------------------------------------------------


def resolve_domain(domain: str) -> str | None:
    """Resolve ``domain`` to an IPv4 address, or None."""
    try:
        return socket.gethostbyname(domain)
    except (socket.gaierror, UnicodeError):
        return None


def _primary_local_address() -> str | None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only picks the outbound interface.
        sock.connect(("8.8.8.8", 80))
        return str(sock.getsockname()[0])
    except OSError:
        return None
    finally:
        sock.close()


def detect_public_ip(
    urls: Sequence[str] = PUBLIC_IP_URLS,
    client: httpx.Client | None = None,
    timeout: float = 3.0,
) -> str | None:
    """Best-effort public IPv4 of this host."""
    owns_client = client is None
    http = client if client is not None else httpx.Client(timeout=timeout)
    try:
        for url in urls:
            try:
                resp = http.get(url)
            except httpx.HTTPError:
                continue
            text = resp.text.strip()
            if resp.status_code == 200 and text:
                return text.splitlines()[0].strip()
    finally:
        if owns_client:
            http.close()
    return _primary_local_address()


# ----------------------------------------------------------------------
# Provisioning state machine
# ----------------------------------------------------------------------


class ProvisioningPhase(Enum):
    IDLE = "idle"
    GATEWAY_STOPPED = "gateway_stopped"
    CERTIFICATE_OBTAINED = "certificate_obtained"
    CONFIG_REWRITTEN = "config_rewritten"
    GATEWAY_RESTARTED = "gateway_restarted"


@dataclass
class ProvisioningState:
    """Progress of one HTTPS provisioning run."""

    domain: str
    email: str
    phase: ProvisioningPhase = ProvisioningPhase.IDLE
    gateway_stopped: bool = False
    certificate_obtained: bool = False
    config_backup: str | None = None
    succeeded: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "email": self.email,
            "phase": self.phase.value,
            "gateway_stopped": self.gateway_stopped,
            "certificate_obtained": self.certificate_obtained,
            "config_backup": self.config_backup,
            "succeeded": self.succeeded,
            "error": self.error,
        }


class CertificateProvisioner:
    """Runs the HTTPS workflow against an already running stack."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        authority: CertificateAuthority,
        settings: Settings,
        confirm: Callable[[str], bool] | None = None,
        resolver: Callable[[str], str | None] = resolve_domain,
        ip_detector: Callable[[], str | None] = detect_public_ip,
    ) -> None:
        self._runtime = runtime
        self._authority = authority
        self._settings = settings
        self._confirm = confirm or (lambda _prompt: False)
        self._resolver = resolver
        self._ip_detector = ip_detector
        self.state: ProvisioningState | None = None

    # ------------------------------------------------------------------
    # Checks before any state transition
    # ------------------------------------------------------------------

    def check_preconditions(self, domain: str, email: str) -> None:
        """Raise ``PreconditionError`` unless the workflow can start safely."""
        if not domain.strip():
            raise PreconditionError("Domain name is required")
        if not email.strip():
            raise PreconditionError("Email is required")
        if not self._settings.compose_path.is_file():
            raise PreconditionError(
                f"{self._settings.compose_file} not found in {self._settings.project_dir}"
            )
        if not self._settings.gateway_template_path.is_file():
            raise PreconditionError(f"{self._settings.gateway_https_template} not found")
        if not self._runtime.is_running(self._settings.gateway_container):
            raise PreconditionError(
                f"{self._settings.gateway_container} container is not running; "
                "install and start the stack first"
            )
        if not self._authority.is_available():
            raise PrerequisiteMissingError("certbot is not installed")

    def verify_dns(self, domain: str) -> bool:
        """Compare the domain's address with this host's; ask on any doubt.

        Returns True when the addresses match, False when the operator chose
        to continue despite a mismatch.

        Raises:
            ProvisioningCancelled: if the operator declines to continue.
        """
        server_ip = self._ip_detector()
        domain_ip = self._resolver(domain)

        if domain_ip is None:
            log.warning("dns_unresolved", domain=domain)
            if not self._confirm(f"Unable to resolve {domain}. Continue anyway?"):
                raise ProvisioningCancelled(f"Unable to resolve domain: {domain}")
            return False

        log.info("dns_resolved", domain=domain, address=domain_ip)
        if server_ip and server_ip != domain_ip:
            log.warning("dns_mismatch", domain=domain, domain_ip=domain_ip, server_ip=server_ip)
            if not self._confirm(
                f"Domain IP ({domain_ip}) doesn't match server IP ({server_ip}). Continue anyway?"
            ):
                raise ProvisioningCancelled("DNS mismatch, setup cancelled")
            return False

        log.info("dns_verified", domain=domain)
        return True

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def run(self, domain: str, email: str, verify_dns: bool = True) -> ProvisioningState:
        """Execute the full workflow.

        Raises:
            PreconditionError: before anything was touched.
            ProvisioningCancelled: the operator declined after the DNS check or
                when asked to mount the certificate volume.
            CertificateError: certificate request failed; gateway restarted.
            StartFailedError: the stack could not be restarted with HTTPS.
        """
        domain = domain.strip()
        email = email.strip()
        self.check_preconditions(domain, email)
        if verify_dns:
            self.verify_dns(domain)

        state = ProvisioningState(domain=domain, email=email)
        self.state = state
        self._stop_gateway(state)
        try:
            self._obtain_certificate(state)
            self._rewrite_config(state)
            self._check_certificate_volume(state)
            self._restart_stack(state)
        except Exception as exc:
            state.succeeded = False
            state.error = str(exc)
            raise
        finally:
            if state.gateway_stopped:
                self._restart_gateway(state)

        state.succeeded = True
        log.info(
            "https_enabled",
            frontend=f"https://{domain}",
            api=f"https://{domain}/api",
            ingestor=f"https://{domain}/ingest",
        )
        log.info(
            "certificate_renewal",
            expires_in_days=90,
            dry_run="sudo certbot renew --dry-run",
            crontab="0 0 1 * * certbot renew --quiet",
        )
        return state

    def _stop_gateway(self, state: ProvisioningState) -> None:
        log.info("gateway_stopping", reason="free port 80")
        if not self._runtime.stop(self._settings.gateway_service):
            if not self._runtime.is_running(self._settings.gateway_container):
                self._runtime.start(self._settings.gateway_service)
            raise DeployError("Failed to stop gateway container")
        state.gateway_stopped = True
        state.phase = ProvisioningPhase.GATEWAY_STOPPED
        log.info("gateway_stopped")

    def _obtain_certificate(self, state: ProvisioningState) -> None:
        log.info("certificate_requesting", domain=state.domain)
        if not self._authority.obtain(state.domain, state.email):
            raise CertificateError(f"Failed to obtain SSL certificate for {state.domain}")
        state.certificate_obtained = True
        state.phase = ProvisioningPhase.CERTIFICATE_OBTAINED
        log.info("certificate_obtained", domain=state.domain)

    def _rewrite_config(self, state: ProvisioningState) -> None:
        try:
            backup = gateway.write_gateway_config(
                self._settings.gateway_template_path,
                self._settings.gateway_config_path,
                state.domain,
            )
        except OSError as exc:
            raise DeployError(f"Failed to write gateway config: {exc}") from exc
        state.config_backup = str(backup) if backup else None
        state.phase = ProvisioningPhase.CONFIG_REWRITTEN

    def _check_certificate_volume(self, state: ProvisioningState) -> None:
        """Back up the compose file and pause until the certificate volume is mounted.

        Declining restores the previous gateway config and cancels the run.
        """
        compose_path = self._settings.compose_path
        gateway.backup_file(compose_path)
        if gateway.compose_mounts_certificates(compose_path):
            log.info("compose_certificate_volume_present")
            return

        log.warning(
            "compose_missing_certificate_volume",
            volume=LETSENCRYPT_VOLUME,
            service=self._settings.gateway_service,
            compose_file=compose_path.name,
        )
        if not self._confirm(
            f"Add '- {LETSENCRYPT_VOLUME}' to the {self._settings.gateway_service} "
            f"volumes in {compose_path.name}. Continue once it is in place?"
        ):
            if state.config_backup:
                gateway.restore_gateway_config(self._settings.gateway_config_path)
            raise ProvisioningCancelled("Certificate volume not mounted, setup cancelled")
        if not gateway.compose_mounts_certificates(compose_path):
            log.warning("compose_certificate_volume_still_missing", compose_file=compose_path.name)

    def _restart_stack(self, state: ProvisioningState) -> None:
        log.info("stack_restarting", https=True)
        if not self._runtime.up_all():
            if state.config_backup:
                gateway.restore_gateway_config(self._settings.gateway_config_path)
            raise StartFailedError(self._settings.gateway_service)
        state.gateway_stopped = False
        state.phase = ProvisioningPhase.GATEWAY_RESTARTED
        log.info("stack_restarted", https=True)

    def _restart_gateway(self, state: ProvisioningState) -> None:
        """Rollback edge: bring the gateway back after a failed run."""
        log.info("gateway_restarting", reason="rollback")
        if self._runtime.start(self._settings.gateway_service):
            state.gateway_stopped = False
            log.info("gateway_restarted")
        else:
            log.error(
                "gateway_restart_failed",
                hint=f"docker compose start {self._settings.gateway_service}",
            )
        state.phase = ProvisioningPhase.GATEWAY_RESTARTED


def make_provisioner(
    runtime: ContainerRuntime,
    settings: Settings,
    confirm: Callable[[str], bool] | None = None,
) -> CertificateProvisioner:
    authority = CertbotAuthority(
        binary=settings.certbot_binary,
        use_sudo=settings.use_sudo,
        timeout=settings.command_timeout_seconds,
    )
    return CertificateProvisioner(runtime, authority, settings, confirm=confirm)
