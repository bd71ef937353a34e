"""Resolve the image or video shown for the current scene or beat."""

from __future__ import annotations

from storyweaver.core.models import Beat, MediaRef, Scene
from storyweaver.storage.store import BlobStore


def resolve_media(scene: Scene, beat: Beat | None, blobs: BlobStore) -> MediaRef | None:
    """Pick the media for what is on screen.

    In beat mode a beat video takes priority over a beat image (an
    unresolvable video id does not fall back to the image); outside beat mode
    the scene's generated image is used.
    """
    if beat is not None:
        kind, ref = ("video", beat.video_ref) if beat.video_ref else ("image", beat.image_ref)
    else:
        kind, ref = "image", scene.image_ref

    if not ref:
        return None
    url = blobs.get(ref)
    return MediaRef(kind=kind, url=url) if url else None
