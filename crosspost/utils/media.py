"""
Media codec utilities

Turns whatever the caller hands us (data-URIs, bare base64, raw bytes or
remote URLs) into ``MediaAsset`` objects, and checks them against each
platform's size ceiling and format allow-list before any network call.
"""
import base64
import binascii
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Union

import httpx
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models import MediaAsset, MediaRole, Platform
from ..publishers.exceptions import PayloadRejectedException

MB = 1024 * 1024
DEFAULT_MIME_TYPE = "image/jpeg"
DATA_URI_PATTERN = re.compile(r"^data:([^;,]+)?((?:;[^;,]*)*),(.*)$", re.DOTALL)
VIDEO_FORMATS = frozenset({"video/mp4", "video/quicktime"})


@dataclass(frozen=True)
class MediaLimits:
    max_image_bytes: int
    image_formats: FrozenSet[str]
    max_video_bytes: int
    video_formats: FrozenSet[str] = VIDEO_FORMATS


PLATFORM_MEDIA_LIMITS: Dict[Platform, MediaLimits] = {
    Platform.TWITTER: MediaLimits(
        max_image_bytes=5 * MB,
        image_formats=frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"}),
        max_video_bytes=512 * MB,
    ),
    Platform.LINKEDIN: MediaLimits(
        max_image_bytes=5 * MB,
        image_formats=frozenset({"image/jpeg", "image/png", "image/gif"}),
        max_video_bytes=200 * MB,
    ),
    Platform.INSTAGRAM: MediaLimits(
        max_image_bytes=8 * MB,
        image_formats=frozenset({"image/jpeg", "image/png"}),
        max_video_bytes=100 * MB,
    ),
}


def sniff_mime_type(data: bytes) -> str:
    """Guess a MIME type from magic bytes, defaulting to JPEG."""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[4:8] == b"ftyp":
        return "video/quicktime" if data[8:12] == b"qt  " else "video/mp4"
    return DEFAULT_MIME_TYPE


def role_for_mime_type(mime_type: str) -> MediaRole:
    return MediaRole.VIDEO if mime_type.startswith("video/") else MediaRole.IMAGE


def _b64decode(payload: str) -> bytes:
    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise PayloadRejectedException(f"Media is not valid base64: {e}")


def decode_media(value: Union[str, bytes], role: Optional[MediaRole] = None) -> MediaAsset:
    """
    Decode an inline media payload.

    Args:
        value: data-URI, bare base64 string, or raw bytes
        role: Explicit role; inferred from the MIME type when omitted

    Returns:
        MediaAsset with decoded bytes

    Raises:
        PayloadRejectedException: Payload cannot be decoded
    """
    if isinstance(value, (bytes, bytearray)):
        data = bytes(value)
        mime_type = sniff_mime_type(data)
    else:
        match = DATA_URI_PATTERN.match(value.strip())
        if match:
            mime_type = (match.group(1) or DEFAULT_MIME_TYPE).lower()
            if ";base64" in (match.group(2) or ""):
                data = _b64decode(match.group(3))
            else:
                data = match.group(3).encode("utf-8")
        else:
            data = _b64decode(value)
            mime_type = sniff_mime_type(data)

    if not data:
        raise PayloadRejectedException("Media payload is empty")

    return MediaAsset(data=data, mime_type=mime_type, role=role or role_for_mime_type(mime_type))


def _log_retry(retry_state) -> None:
    logger.warning(
        f"Media download failed (attempt {retry_state.attempt_number}), retrying: "
        f"{retry_state.outcome.exception()}"
    )


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    before_sleep=_log_retry,
    reraise=True,
)
async def _download(client: httpx.AsyncClient, url: str) -> httpx.Response:
    logger.debug(f"Downloading media: {url}")
    return await client.get(url, follow_redirects=True)


async def fetch_remote_media(
    url: str, client: Optional[httpx.AsyncClient] = None, role: Optional[MediaRole] = None
) -> MediaAsset:
    """
    Download a remote media file.

    The response Content-Type is trusted for the MIME type; magic bytes are
    only consulted when the server sends none.

    Raises:
        PayloadRejectedException: URL unreachable or answered with an error
    """
    try:
        if client is not None:
            response = await _download(client, url)
        else:
            async with httpx.AsyncClient(timeout=60.0) as own_client:
                response = await _download(own_client, url)
    except httpx.HTTPError as e:
        raise PayloadRejectedException(f"Could not download media from {url}: {e}")

    if response.status_code >= 400:
        raise PayloadRejectedException(
            f"Could not download media from {url}: HTTP {response.status_code}",
            status_code=response.status_code,
        )

    data = response.content
    if not data:
        raise PayloadRejectedException(f"Media at {url} is empty")

    content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    mime_type = content_type or sniff_mime_type(data)
    return MediaAsset(
        data=data,
        mime_type=mime_type,
        role=role or role_for_mime_type(mime_type),
        source_url=url,
    )


async def normalize_media(
    value: Union[str, bytes, MediaAsset],
    client: Optional[httpx.AsyncClient] = None,
    role: Optional[MediaRole] = None,
) -> MediaAsset:
    """
    Normalize any supported media input into a MediaAsset.

    Args:
        value: MediaAsset, raw bytes, data-URI, bare base64, or http(s) URL
        client: HTTP client used for remote URLs
        role: Explicit role (e.g. THUMBNAIL)

    Returns:
        MediaAsset

    Raises:
        PayloadRejectedException: Input cannot be decoded or fetched
    """
    if isinstance(value, MediaAsset):
        return value
    if isinstance(value, str) and value.strip().lower().startswith(("http://", "https://")):
        return await fetch_remote_media(value.strip(), client=client, role=role)
    return decode_media(value, role=role)


def _format_mb(size: int) -> str:
    return f"{size / MB:.2f}"


def validate_for_platform(asset: MediaAsset, platform: Platform) -> Optional[str]:
    """
    Check an asset against a platform's size ceiling and format allow-list.

    The ceiling is inclusive: an asset of exactly the limit passes.

    Returns:
        None when valid, otherwise a message naming the platform, the limit
        and the observed value
    """
    limits = PLATFORM_MEDIA_LIMITS[Platform(platform)]
    name = Platform(platform).value.capitalize()

    if asset.role == MediaRole.VIDEO:
        max_bytes, formats, kind = limits.max_video_bytes, limits.video_formats, "Video"
    else:
        max_bytes, formats, kind = limits.max_image_bytes, limits.image_formats, "Image"

    if asset.mime_type not in formats:
        return (
            f"{name} does not support {asset.mime_type}. "
            f"Supported formats: {', '.join(sorted(formats))}"
        )

    if asset.size > max_bytes:
        return (
            f"{kind} size ({asset.size} bytes, {_format_mb(asset.size)} MB) exceeds {name}'s limit "
            f"of {max_bytes} bytes ({max_bytes // MB} MB)"
        )

    return None


def ensure_valid_for_platform(asset: MediaAsset, platform: Platform) -> MediaAsset:
    """Raise PayloadRejectedException when the asset is not valid for the platform."""
    error = validate_for_platform(asset, platform)
    if error:
        raise PayloadRejectedException(error, platform=Platform(platform).value)
    return asset
