"""Image diff detection: did a pull actually change the local image?"""

from __future__ import annotations

from dataclasses import dataclass

from logzai_deploy.errors import PullFailedError
from logzai_deploy.logging import get_logger
from logzai_deploy.runtime import ContainerRuntime

log = get_logger("logzai_deploy.images")


@dataclass(frozen=True)
class ImageState:
    """Content identifier of an image at a point in time.

    An empty identifier means the image is not present locally.
    """

    image_id: str = ""

    @property
    def present(self) -> bool:
        return bool(self.image_id)


@dataclass(frozen=True)
class ImageDiff:
    """Before/after image identifiers around one pull."""

    ref: str
    before: ImageState
    after: ImageState

    @property
    def changed(self) -> bool:
        return self.before != self.after

    @property
    def old_image_to_remove(self) -> str | None:
        """The superseded image id, when there is one to clean up."""
        if self.changed and self.before.present and self.after.present:
            return self.before.image_id
        return None


def diff_image(runtime: ContainerRuntime, ref: str) -> ImageDiff:
    """Pull ``ref`` and report whether its local content identifier changed.

    The pull is issued on every call so a stale local image is never taken as
    current.

    Raises:
        PullFailedError: if the pull fails or leaves no local image behind.
    """
    before = ImageState(runtime.image_id(ref))

    log.info("image_pull_started", image=ref)
    if not runtime.pull(ref):
        raise PullFailedError(ref, "registry pull failed")

    after = ImageState(runtime.image_id(ref))
    if not after.present:
        raise PullFailedError(ref, "image not present after pull")

    diff = ImageDiff(ref=ref, before=before, after=after)
    if diff.changed:
        log.info(
            "image_new_version",
            image=ref,
            before=before.image_id or None,
            after=after.image_id,
        )
    else:
        log.info("image_up_to_date", image=ref, image_id=after.image_id)
    return diff
