from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from brickwall.chain.event_log import log_event
from brickwall.errors import ValidationError

log = logging.getLogger("brickwall.images")

_DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class DecodedImage:
    data: bytes
    ext: str


def sniff_image_ext(data: bytes) -> Optional[str]:
    """File extension for a supported image format, by magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if data.startswith(b"\xff\xd8\xff"):
        return "jpg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def decode_image_payload(payload: str, *, max_bytes: int) -> DecodedImage:
    """Decode a base64 image (optionally a data: URL) and check its format and size."""
    s = _DATA_URL_RE.sub("", str(payload or "").strip(), count=1)
    if not s:
        raise ValidationError("bad_image", "image payload is empty", {})

    try:
        data = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("bad_image", "image payload is not valid base64", {}) from e

    if len(data) > int(max_bytes):
        raise ValidationError("image_too_large", "image exceeds the size limit", {"size": len(data), "max_bytes": int(max_bytes)})

    ext = sniff_image_ext(data)
    if ext is None:
        raise ValidationError("bad_image", "unsupported image format", {})
    return DecodedImage(data=data, ext=ext)


class ImageStore:
    """UUID-named image files in a single directory.

    Locations handed back are bare file names relative to `root`.
    """

    def __init__(self, root: str, *, max_bytes: int) -> None:
        self.root = str(root)
        self.max_bytes = int(max_bytes)

    def decode(self, payload: str) -> DecodedImage:
        return decode_image_payload(payload, max_bytes=self.max_bytes)

    def _write_sync(self, image: DecodedImage) -> str:
        os.makedirs(self.root, exist_ok=True)
        name = f"{uuid.uuid4()}.{image.ext}"
        path = os.path.join(self.root, name)
        tmp = path + ".tmp"
        with open(tmp, "wb") as fh:
            fh.write(image.data)
        os.replace(tmp, path)
        return name

    async def save(self, image: DecodedImage) -> str:
        name = await asyncio.to_thread(self._write_sync, image)
        log_event(log, "image_saved", location=name, size=len(image.data))
        return name

    def path_for(self, location: str) -> str:
        name = os.path.basename(str(location or ""))
        if not name or name != location:
            raise ValidationError("bad_image_location", "invalid image location", {"location": location})
        return os.path.join(self.root, name)

    def _remove_sync(self, location: str) -> bool:
        try:
            os.remove(self.path_for(location))
        except FileNotFoundError:
            return False
        return True

    async def remove(self, location: str) -> None:
        """Delete a stored image. A missing file is not an error."""
        try:
            removed = await asyncio.to_thread(self._remove_sync, location)
        except OSError as e:
            log_event(log, "image_remove_failed", level=logging.WARNING, location=location, error=str(e))
            return
        log_event(log, "image_removed", location=location, existed=removed)
