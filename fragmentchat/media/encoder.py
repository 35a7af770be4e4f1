"""Encode image attachments as embeddable data URLs."""

import asyncio
import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from loguru import logger


class EncodingError(Exception):
    """An attachment could not be converted to its embeddable form."""

    def __init__(self, short_message: str, detail: str = ""):
        self.short_message = short_message
        self.detail = detail
        super().__init__(detail or short_message)


@dataclass
class ImageFile:
    """A binary image attachment."""

    data: bytes
    mime_type: str = ""
    filename: str = ""  # Cosmetic; used to guess the mime type when missing

    def resolve_mime_type(self) -> str:
        mime = self.mime_type or mimetypes.guess_type(self.filename)[0] or ""
        if not mime:
            raise EncodingError(
                "unknown media type",
                f"Cannot determine media type for {self.filename or 'attachment'}",
            )
        return mime


def load_image_file(path: str | Path) -> ImageFile:
    """Read an image from disk."""
    p = Path(path)
    if not p.is_file():
        raise EncodingError("file not found", f"Image file not found: {p}")
    return ImageFile(data=p.read_bytes(), filename=p.name)


def encode_image(file: ImageFile) -> str:
    """Encode one attachment as ``data:{mime};base64,{payload}``."""
    mime = file.resolve_mime_type()
    if not isinstance(file.data, (bytes, bytearray, memoryview)):
        raise EncodingError(
            "invalid payload",
            f"Expected bytes for {file.filename or 'attachment'}, got {type(file.data).__name__}",
        )
    b64 = base64.b64encode(bytes(file.data)).decode()
    return f"data:{mime};base64,{b64}"


async def encode_images(files: list[ImageFile]) -> list[str]:
    """Encode attachments concurrently, preserving order.

    Fails as a whole if any single attachment fails.
    """
    if not files:
        return []

    results = await asyncio.gather(
        *(asyncio.to_thread(encode_image, f) for f in files)
    )
    logger.debug(f"Encoded {len(results)} image attachment(s)")
    return list(results)


def decode_image(data_url: str) -> tuple[str, bytes]:
    """Split a data URL back into ``(mime_type, bytes)``."""
    header, sep, payload = data_url.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise EncodingError("malformed data URL", f"Not a base64 data URL: {data_url[:40]}")

    mime = header[len("data:"):-len(";base64")]
    try:
        return mime, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError("malformed data URL", str(e)) from e
