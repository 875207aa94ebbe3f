"""
Media attachment validation.

Reports carry photos and videos, profiles carry an avatar. Both arrive
either as remote http(s) URLs or as base64 data URLs produced by the
browser's FileReader. Data URLs are size-checked after decoding.
"""

import base64
import binascii
import re
from typing import Optional
from uuid import uuid4

from ..schemas import Media, MediaKind, MediaUpload
from .errors import ValidationError


MAX_MEDIA_MB = 5
MAX_AVATAR_MB = 2

_DATA_URL_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]+)*)(?P<b64>;base64)?,(?P<data>.*)$",
    re.DOTALL,
)


def parse_data_url(url: str) -> tuple[str, bytes]:
    """
    Split a data URL into (mime_type, payload bytes).

    Raises ValidationError if the URL is malformed.
    """
    match = _DATA_URL_RE.match(url)
    if not match:
        raise ValidationError("Malformed data URL")

    mime = match.group("mime") or "text/plain"
    data = match.group("data")

    if match.group("b64"):
        try:
            payload = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Malformed base64 payload in data URL")
    else:
        payload = data.encode()

    return mime.lower(), payload


def _check_reference(url: str) -> Optional[tuple[str, bytes]]:
    """Return the parsed data URL, or None for an http(s) reference."""
    if url.startswith("data:"):
        return parse_data_url(url)
    if url.startswith(("http://", "https://")):
        return None
    raise ValidationError("Media must be an http(s) URL or a data URL")


def _check_size(payload: bytes, max_mb: int) -> None:
    if len(payload) > max_mb * 1024 * 1024:
        raise ValidationError(f"Maximum file size is {max_mb}MB")


def build_media(upload: MediaUpload) -> Media:
    """
    Validate an uploaded item and give it an id.

    The kind comes from the upload if given, otherwise from the data
    URL's mime type: image/* is an image, anything else a video.
    """
    parsed = _check_reference(upload.url)

    kind = upload.kind
    if parsed is not None:
        mime, payload = parsed
        _check_size(payload, MAX_MEDIA_MB)
        if kind is None:
            kind = MediaKind.IMAGE if mime.startswith("image/") else MediaKind.VIDEO
    elif kind is None:
        raise ValidationError("Media kind is required for remote URLs")

    return Media(id=uuid4(), kind=kind, url=upload.url)


def validate_avatar(url: str) -> str:
    """Avatars must be images no larger than 2MB."""
    parsed = _check_reference(url)
    if parsed is not None:
        mime, payload = parsed
        if not mime.startswith("image/"):
            raise ValidationError("Please upload an image file")
        _check_size(payload, MAX_AVATAR_MB)
    return url
