from __future__ import annotations

import base64
import binascii
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from devmentor.errors import ValidationError
from devmentor.memory.events import utc_now
from devmentor.memory.models import IMAGE_MIME_TYPES, IMAGE_SOURCES, ImageAttachment

MAX_IMAGES_PER_MESSAGE = 5
MAX_IMAGE_BYTES = 5 * 1024 * 1024

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class ImagePayload:
    id: str
    data_url: str
    mime_type: str
    source: str


class AttachmentStore:
    """Writes decoded image payloads under ``<root>/<session>/<message>/``."""

    def __init__(self, root: str):
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def save_images(self, session_id: str, message_id: str, images: list[ImagePayload]) -> list[ImageAttachment]:
        if len(images) > MAX_IMAGES_PER_MESSAGE:
            raise ValidationError(f"At most {MAX_IMAGES_PER_MESSAGE} images may be attached to a message")
        self._check_id(session_id)
        self._check_id(message_id)

        decoded: list[tuple[ImagePayload, bytes]] = []
        for image in images:
            decoded.append((image, self._decode(image)))

        target_dir = self._root / session_id / message_id
        target_dir.mkdir(parents=True, exist_ok=True)
        attachments: list[ImageAttachment] = []
        for index, (image, data) in enumerate(decoded):
            relative = Path(session_id) / message_id / f"image_{index}.{_EXTENSIONS[image.mime_type]}"
            (self._root / relative).write_bytes(data)
            attachments.append(
                ImageAttachment(
                    id=image.id,
                    source=image.source,
                    mime_type=image.mime_type,
                    file_size=len(data),
                    timestamp=utc_now(),
                    path=relative.as_posix(),
                )
            )
        logger.debug(f"Saved {len(attachments)} image(s) for message {message_id}")
        return attachments

    def resolve(self, relative_path: str) -> Path:
        path = (self._root / relative_path).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise ValidationError(f"Image path escapes the images directory: {relative_path}")
        return path

    def delete_session(self, session_id: str) -> None:
        if not _SAFE_ID_RE.match(session_id):
            return
        target = self._root / session_id
        if target.exists():
            shutil.rmtree(target, ignore_errors=True)
            logger.debug(f"Removed images for session {session_id}")

    def _check_id(self, value: str) -> None:
        if not _SAFE_ID_RE.match(value):
            raise ValidationError(f"Invalid identifier for image storage: {value!r}")

    def _decode(self, image: ImagePayload) -> bytes:
        if image.mime_type not in IMAGE_MIME_TYPES:
            raise ValidationError(f"Unsupported image type: {image.mime_type}")
        if image.source not in IMAGE_SOURCES:
            raise ValidationError(f"Unsupported image source: {image.source}")

        match = _DATA_URL_RE.match(image.data_url)
        if match is None:
            raise ValidationError(f"Image {image.id} is not a base64 data URL")
        if match.group("mime") != image.mime_type:
            raise ValidationError(f"Image {image.id} declares {image.mime_type} but contains {match.group('mime')}")
        try:
            data = base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError) as ex:
            raise ValidationError(f"Image {image.id} has invalid base64 data") from ex
        if len(data) > MAX_IMAGE_BYTES:
            raise ValidationError(f"Image {image.id} exceeds {MAX_IMAGE_BYTES // (1024 * 1024)} MiB")
        return data
