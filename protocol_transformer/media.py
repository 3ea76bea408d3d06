"""
Data URL helpers for inline media.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class DataURL:
    media_type: str
    data: str  # base64 payload


def parse_data_url(url: str) -> Optional[DataURL]:
    """
    Split a `data:<media-type>;base64,<data>` URL.

    Returns None for remote URLs and for data URLs that are not base64 encoded.
    """
    if not url or not url.startswith("data:"):
        return None
    header, sep, data = url[5:].partition(",")
    if not sep:
        return None
    params = header.split(";")
    if "base64" not in params[1:]:
        return None
    media_type = params[0] or "application/octet-stream"
    return DataURL(media_type=media_type, data=data)


def build_data_url(media_type: str, data: str) -> str:
    return f"data:{media_type};base64,{data}"


def image_format_media_type(fmt: Optional[str]) -> str:
    """Media type of an image output format such as png or jpeg."""
    fmt = (fmt or "png").lower()
    if fmt == "jpg":
        fmt = "jpeg"
    return f"image/{fmt}"
