"""Reverse gateway (nginx) configuration rendering."""

from __future__ import annotations

import shutil
from pathlib import Path

from logzai_deploy.constants import BACKUP_SUFFIX, DOMAIN_PLACEHOLDER, LETSENCRYPT_VOLUME
from logzai_deploy.errors import PreconditionError
from logzai_deploy.logging import get_logger

log = get_logger("logzai_deploy.gateway")


def render_gateway_config(template: str, domain: str) -> str:
    """Substitute every domain placeholder in ``template``."""
    if not domain.strip():
        raise PreconditionError("Domain name is required")
    return template.replace(DOMAIN_PLACEHOLDER, domain.strip())


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def backup_file(path: Path) -> Path | None:
    """Copy ``path`` to ``<name>.backup``; None when there is nothing to copy."""
    if not path.exists():
        return None
    backup = backup_path(path)
    shutil.copy2(path, backup)
    log.info("file_backed_up", path=str(path), backup=str(backup))
    return backup


def write_gateway_config(template_path: Path, target_path: Path, domain: str) -> Path | None:
    """Render ``template_path`` for ``domain`` into ``target_path``.

    An existing target is first copied to ``<name>.backup``.  Returns the
    backup path, or None when there was nothing to back up.
    """
    if not template_path.is_file():
        raise PreconditionError(f"{template_path.name} not found")

    content = render_gateway_config(template_path.read_text(encoding="utf-8"), domain)

    backup = backup_file(target_path)

    tmp_path = target_path.with_suffix(target_path.suffix + ".tmp")
    tmp_path.write_text(content, encoding="utf-8")
    tmp_path.replace(target_path)
    log.info("gateway_config_written", path=str(target_path), domain=domain)
    return backup


def restore_gateway_config(target_path: Path) -> bool:
    """Put ``<name>.backup`` back in place of ``target_path``."""
    backup = backup_path(target_path)
    if not backup.exists():
        return False
    shutil.copy2(backup, target_path)
    log.info("gateway_config_restored", path=str(target_path))
    return True


def compose_mounts_certificates(compose_path: Path) -> bool:
    """Whether the compose file mounts the Let's Encrypt directory read-only."""
    try:
        return LETSENCRYPT_VOLUME in compose_path.read_text(encoding="utf-8")
    except OSError:
        return False
