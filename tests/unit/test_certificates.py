"""Unit tests for the HTTPS provisioning workflow."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

from logzai_deploy.certificates import (
    CertbotAuthority,
    CertificateProvisioner,
    ProvisioningPhase,
    detect_public_ip,
)
from logzai_deploy.errors import (
    CertificateError,
    DeployError,
    PreconditionError,
    PrerequisiteMissingError,
    ProvisioningCancelled,
    StartFailedError,
)

GATEWAY = "logzai-gateway"
SERVER_IP = "203.0.113.10"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeAuthority:
    def __init__(self, succeed: bool = True, available: bool = True) -> None:
        self.succeed = succeed
        self.available = available
        self.requests: list[tuple[str, str]] = []

    def is_available(self) -> bool:
        return self.available

    def obtain(self, domain: str, email: str) -> bool:
        self.requests.append((domain, email))
        return self.succeed


@pytest.fixture
def install_dir(settings) -> Path:
    root = Path(settings.project_dir)
    (root / "docker-compose.yml").write_text(
        "services:\n  logzai-gateway:\n    volumes:\n"
        "      - /etc/letsencrypt:/etc/letsencrypt:ro\n",
        encoding="utf-8",
    )
    (root / "gateway-https.conf").write_text("server_name ${DOMAIN};\n", encoding="utf-8")
    (root / "gateway.conf").write_text("listen 80;\n", encoding="utf-8")
    return root


def _provisioner(runtime, settings, authority=None, confirm=None, domain_ip=SERVER_IP):
    return CertificateProvisioner(
        runtime,
        authority or FakeAuthority(),
        settings,
        confirm=confirm,
        resolver=lambda _domain: domain_ip,
        ip_detector=lambda: SERVER_IP,
    )


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


class TestPreconditions:
    """Preconditions are checked before any state transition."""

    def test_empty_domain(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])

        with pytest.raises(PreconditionError):
            _provisioner(runtime, settings).run("", "ops@example.com")

        assert runtime.calls == []

    def test_missing_template(self, make_runtime, settings, install_dir):
        (install_dir / "gateway-https.conf").unlink()
        runtime = make_runtime(running=[GATEWAY])

        with pytest.raises(PreconditionError, match="gateway-https.conf"):
            _provisioner(runtime, settings).run("example.com", "ops@example.com")

        assert runtime.calls == []

    def test_missing_compose_file(self, make_runtime, settings, install_dir):
        (install_dir / "docker-compose.yml").unlink()

        with pytest.raises(PreconditionError, match="docker-compose.yml"):
            _provisioner(make_runtime(running=[GATEWAY]), settings).run(
                "example.com", "ops@example.com"
            )

    def test_gateway_not_running(self, make_runtime, settings, install_dir):
        runtime = make_runtime()

        with pytest.raises(PreconditionError, match="not running"):
            _provisioner(runtime, settings).run("example.com", "ops@example.com")

        assert "stop" not in runtime.names()

    def test_certbot_missing(self, make_runtime, settings, install_dir):
        with pytest.raises(PrerequisiteMissingError):
            _provisioner(
                make_runtime(running=[GATEWAY]), settings, FakeAuthority(available=False)
            ).run("example.com", "ops@example.com")


# ---------------------------------------------------------------------------
# DNS verification
# ---------------------------------------------------------------------------


class TestVerifyDns:
    """DNS verification is advisory."""

    def test_matching_address(self, make_runtime, settings):
        assert _provisioner(make_runtime(), settings).verify_dns("example.com") is True

    def test_mismatch_asks_and_continues(self, make_runtime, settings):
        confirm = MagicMock(return_value=True)
        provisioner = _provisioner(make_runtime(), settings, confirm=confirm, domain_ip="1.2.3.4")

        assert provisioner.verify_dns("example.com") is False
        confirm.assert_called_once()

    def test_mismatch_declined_cancels(self, make_runtime, settings):
        provisioner = _provisioner(
            make_runtime(), settings, confirm=lambda _p: False, domain_ip="1.2.3.4"
        )

        with pytest.raises(ProvisioningCancelled):
            provisioner.verify_dns("example.com")

    def test_unresolved_domain_asks(self, make_runtime, settings):
        confirm = MagicMock(return_value=True)
        provisioner = _provisioner(make_runtime(), settings, confirm=confirm, domain_ip=None)

        assert provisioner.verify_dns("example.com") is False
        confirm.assert_called_once()

    def test_declined_before_gateway_touched(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])
        provisioner = _provisioner(runtime, settings, confirm=lambda _p: False, domain_ip="1.2.3.4")

        with pytest.raises(ProvisioningCancelled):
            provisioner.run("example.com", "ops@example.com")

        assert "stop" not in runtime.names()
        assert runtime.is_running(GATEWAY)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class TestRun:
    """Tests for CertificateProvisioner.run()."""

    def test_success_path(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])
        authority = FakeAuthority()

        state = _provisioner(runtime, settings, authority).run(" example.com ", "ops@example.com")

        assert state.succeeded is True
        assert state.phase is ProvisioningPhase.GATEWAY_RESTARTED
        assert state.certificate_obtained is True
        assert state.gateway_stopped is False
        assert authority.requests == [("example.com", "ops@example.com")]
        assert runtime.names() == ["stop", "up_all"]
        assert (install_dir / "gateway.conf").read_text(encoding="utf-8") == (
            "server_name example.com;\n"
        )
        assert (install_dir / "gateway.conf.backup").read_text(encoding="utf-8") == "listen 80;\n"
        assert runtime.is_running(GATEWAY)

    def test_certificate_failure_restarts_gateway(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])
        provisioner = _provisioner(runtime, settings, FakeAuthority(succeed=False))

        with pytest.raises(CertificateError):
            provisioner.run("example.com", "ops@example.com")

        assert runtime.is_running(GATEWAY) is True
        assert runtime.names() == ["stop", "start"]
        state = provisioner.state
        assert state is not None
        assert state.succeeded is False
        assert state.gateway_stopped is False
        assert state.certificate_obtained is False
        assert state.phase is ProvisioningPhase.GATEWAY_RESTARTED

    def test_certificate_failure_leaves_config_untouched(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])

        with pytest.raises(CertificateError):
            _provisioner(runtime, settings, FakeAuthority(succeed=False)).run(
                "example.com", "ops@example.com"
            )

        assert (install_dir / "gateway.conf").read_text(encoding="utf-8") == "listen 80;\n"
        assert not (install_dir / "gateway.conf.backup").exists()

    def test_stack_restart_failure_restores_config(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY], fail=["up_all"])

        with pytest.raises(StartFailedError):
            _provisioner(runtime, settings).run("example.com", "ops@example.com")

        assert (install_dir / "gateway.conf").read_text(encoding="utf-8") == "listen 80;\n"
        assert runtime.is_running(GATEWAY)

    def test_success_backs_up_compose_file(self, make_runtime, settings, install_dir):
        original = (install_dir / "docker-compose.yml").read_text(encoding="utf-8")

        _provisioner(make_runtime(running=[GATEWAY]), settings).run(
            "example.com", "ops@example.com"
        )

        backup = install_dir / "docker-compose.yml.backup"
        assert backup.read_text(encoding="utf-8") == original

    def test_missing_certificate_volume_waits_for_operator(
        self, make_runtime, settings, install_dir
    ):
        (install_dir / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
        runtime = make_runtime(running=[GATEWAY])
        confirm = MagicMock(return_value=True)

        state = _provisioner(runtime, settings, confirm=confirm).run(
            "example.com", "ops@example.com", verify_dns=False
        )

        confirm.assert_called_once()
        assert "/etc/letsencrypt:/etc/letsencrypt:ro" in confirm.call_args.args[0]
        assert state.succeeded is True
        assert runtime.names() == ["stop", "up_all"]
        assert (install_dir / "docker-compose.yml.backup").exists()

    def test_missing_certificate_volume_declined_rolls_back(
        self, make_runtime, settings, install_dir
    ):
        (install_dir / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")
        runtime = make_runtime(running=[GATEWAY])
        provisioner = _provisioner(runtime, settings, confirm=lambda _p: False)

        with pytest.raises(ProvisioningCancelled):
            provisioner.run("example.com", "ops@example.com", verify_dns=False)

        assert runtime.names() == ["stop", "start"]
        assert runtime.is_running(GATEWAY)
        assert (install_dir / "gateway.conf").read_text(encoding="utf-8") == "listen 80;\n"
        assert provisioner.state.succeeded is False

    def test_config_write_failure_restarts_gateway(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])

        with patch(
            "logzai_deploy.certificates.gateway.write_gateway_config",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(DeployError, match="disk full"):
                _provisioner(runtime, settings).run("example.com", "ops@example.com")

        assert runtime.names() == ["stop", "start"]
        assert runtime.is_running(GATEWAY)

    def test_unexpected_error_restarts_gateway(self, make_runtime, settings, install_dir):
        class ExplodingAuthority(FakeAuthority):
            def obtain(self, domain: str, email: str) -> bool:
                raise RuntimeError("certbot crashed")

        runtime = make_runtime(running=[GATEWAY])
        provisioner = _provisioner(runtime, settings, ExplodingAuthority())

        with pytest.raises(RuntimeError):
            provisioner.run("example.com", "ops@example.com")

        assert runtime.is_running(GATEWAY)
        assert provisioner.state.succeeded is False
        assert provisioner.state.gateway_stopped is False

    def test_failed_stop_brings_gateway_back(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY])

        def stop_and_report_failure(service: str) -> bool:
            runtime.calls.append(("stop", service))
            runtime.running.discard(service)
            return False

        runtime.stop = stop_and_report_failure
        authority = FakeAuthority()

        with pytest.raises(DeployError, match="stop gateway"):
            _provisioner(runtime, settings, authority).run("example.com", "ops@example.com")

        assert runtime.names() == ["stop", "start"]
        assert runtime.is_running(GATEWAY)
        assert authority.requests == []

    def test_failed_stop_leaves_running_gateway_alone(self, make_runtime, settings, install_dir):
        runtime = make_runtime(running=[GATEWAY], fail=["stop"])

        with pytest.raises(DeployError):
            _provisioner(runtime, settings).run("example.com", "ops@example.com")

        assert runtime.names() == ["stop"]
        assert runtime.is_running(GATEWAY)
        assert (install_dir / "gateway.conf").read_text(encoding="utf-8") == "listen 80;\n"


class TestCertbotAuthority:
    """Tests for the certbot client."""

    def test_command_line(self):
        cmd = CertbotAuthority(use_sudo=True).command("example.com", "ops@example.com")

        assert cmd[:3] == ["sudo", "certbot", "certonly"]
        assert "--standalone" in cmd
        assert "--non-interactive" in cmd
        assert cmd[-2:] == ["-d", "example.com"]

    def test_nonzero_exit_is_failure(self):
        proc = MagicMock(returncode=1, stderr="rate limited")
        with patch("logzai_deploy.certificates.subprocess.run", return_value=proc):
            assert CertbotAuthority(use_sudo=False).obtain("example.com", "a@b.c") is False

    def test_zero_exit_is_success(self):
        proc = MagicMock(returncode=0, stderr="")
        with patch("logzai_deploy.certificates.subprocess.run", return_value=proc) as run:
            assert CertbotAuthority(use_sudo=False).obtain("example.com", "a@b.c") is True

        assert run.call_args.args[0][0] == "certbot"


class TestDetectPublicIp:
    """Tests for detect_public_ip()."""

    def test_falls_through_failing_services(self):
        ok = MagicMock(status_code=200, text="198.51.100.7\n")
        client = MagicMock()
        client.get.side_effect = [httpx.ConnectError("down"), ok]

        assert detect_public_ip(["https://a", "https://b"], client=client) == "198.51.100.7"

    def test_falls_back_to_local_address(self):
        client = MagicMock()
        client.get.side_effect = httpx.ConnectError("offline")

        with patch(
            "logzai_deploy.certificates._primary_local_address", return_value="10.0.0.5"
        ):
            assert detect_public_ip(["https://a"], client=client) == "10.0.0.5"
