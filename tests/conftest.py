"""Shared fixtures: an in-memory container runtime."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from logzai_deploy.config import Settings


class FakeRuntime:
    """Records every call and simulates containers keyed by compose service name.

    ``image_ids`` maps an image ref to the identifiers returned by successive
    ``image_id`` calls; the last value repeats once the list is exhausted.
    """

    def __init__(
        self,
        image_ids: dict[str, list[str]] | None = None,
        running: Sequence[str] = (),
        fail: Sequence[str] = (),
        fail_start_for: Sequence[str] = (),
        exec_codes: dict[str, int] | None = None,
    ) -> None:
        self.image_ids = {ref: list(ids) for ref, ids in (image_ids or {}).items()}
        self.running: set[str] = set(running)
        self.existing: set[str] = set(running)
        self.fail = set(fail)
        self.fail_start_for = set(fail_start_for)
        self.exec_codes = exec_codes or {}
        self.calls: list[tuple[str, ...]] = []
        self.duplicate_starts: list[str] = []

    def stop(self, service: str) -> bool:
        self.calls.append(("stop", service))
        if "stop" in self.fail or service not in self.running:
            return False
        self.running.discard(service)
        return True

    def remove(self, service: str) -> bool:
        self.calls.append(("remove", service))
        if "remove" in self.fail or service not in self.existing:
            return False
        self.existing.discard(service)
        return True

    def pull(self, ref: str) -> bool:
        self.calls.append(("pull", ref))
        return "pull" not in self.fail

    def image_id(self, ref: str) -> str:
        self.calls.append(("image_id", ref))
        ids = self.image_ids.get(ref, [])
        if not ids:
            return ""
        return ids.pop(0) if len(ids) > 1 else ids[0]

    def remove_image(self, image_id: str) -> bool:
        self.calls.append(("remove_image", image_id))
        return "remove_image" not in self.fail

    def start(self, service: str, force_recreate: bool = False) -> bool:
        self.calls.append(("start", service, str(force_recreate)))
        if "start" in self.fail or service in self.fail_start_for:
            return False
        if service in self.existing and not force_recreate:
            self.duplicate_starts.append(service)
        self.existing.add(service)
        self.running.add(service)
        return True

    def up_all(self) -> bool:
        self.calls.append(("up_all",))
        if "up_all" in self.fail:
            return False
        self.running.add("logzai-gateway")
        self.existing.add("logzai-gateway")
        return True

    def is_running(self, container_name: str) -> bool:
        return container_name in self.running

    def exec(self, container_name: str, command: Sequence[str]) -> int:
        self.calls.append(("exec", container_name, *command))
        return self.exec_codes.get(container_name, 0)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def make_runtime() -> type[FakeRuntime]:
    """Factory for fake runtimes: ``make_runtime(image_ids=..., running=...)``."""
    return FakeRuntime


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in a temp installation directory, isolated from .env files."""
    return Settings(_env_file=None, project_dir=str(tmp_path), post_start_settle_seconds=0)
