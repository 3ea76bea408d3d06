"""
OpenAI Images API routing.

A chat request whose modalities include "image" is served by the Images API
instead of Chat Completions: /images/generations for text prompts and
/images/edits (multipart) when the prompt carries input images. The request
metadata tells the response parser which shape to expect.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from protocol_transformer.canonical.metadata import MetadataKey, TransformerMetadata
from protocol_transformer.canonical.types import (
    Choice,
    ContentPart,
    FinishReason,
    Message,
    Request,
    Response,
    Role,
    Usage,
)
from protocol_transformer.errors import InvalidRequestError, UnsupportedOperationError
from protocol_transformer.httpmodels import HttpRequest, MultipartFile, dump_json
from protocol_transformer.media import build_data_url, image_format_media_type, parse_data_url

logger = logging.getLogger(__name__)

IMAGE_GENERATION_FORMAT = "openai/image_generation"
DEFAULT_IMAGE_MODEL_NAME = "image-generation"


def _prompt_and_images(request: Request) -> Tuple[str, List[str]]:
    """Text prompt and input image URLs of the last user message."""
    for message in reversed(request.messages):
        if message.role != Role.USER.value:
            continue
        images = [
            p.image_url.url
            for p in message.content.iter_parts()
            if p.type == "image_url" and p.image_url is not None and p.image_url.url
        ]
        return message.text(), images
    return "", []


def _tool_options(request: Request) -> Dict[str, Any]:
    tool = request.image_generation_tool()
    if tool is None or tool.image_generation is None:
        return {}
    options = tool.image_generation
    values = {
        "output_format": options.output_format,
        "size": options.size,
        "quality": options.quality,
        "background": options.background,
        "moderation": options.moderation,
        "output_compression": options.output_compression,
        "partial_images": options.partial_images,
    }
    return {k: v for k, v in values.items() if v is not None}


def build_image_request(request: Request, url_base: str, headers: httpx.Headers) -> HttpRequest:
    """
    Build an Images API request for an image-generation chat request.

    Args:
        request: Canonical request with "image" in its modalities
        url_base: Endpoint prefix, e.g. https://api.openai.com/v1
        headers: Base headers (auth is attached by the caller)

    Returns:
        HttpRequest: JSON generation request or multipart edit request
    """
    if request.stream:
        raise UnsupportedOperationError("streaming is not supported for image generation")

    prompt, images = _prompt_and_images(request)
    if not prompt:
        raise InvalidRequestError("image generation requires a text prompt")

    fields: Dict[str, Any] = {"prompt": prompt, "model": request.model}
    fields.update(_tool_options(request))
    if request.n is not None:
        fields["n"] = request.n
    if not request.model.startswith("gpt-image"):
        fields["response_format"] = "b64_json"
    if request.user:
        fields["user"] = request.user

    metadata = TransformerMetadata()
    metadata.set(MetadataKey.OUTBOUND_FORMAT_TYPE, IMAGE_GENERATION_FORMAT)
    metadata.set(MetadataKey.MODEL, request.model)
    if fields.get("output_format"):
        metadata.set(MetadataKey.IMAGE_OUTPUT_FORMAT, fields["output_format"])

    if not images:
        headers["Content-Type"] = "application/json"
        return HttpRequest(
            method="POST",
            url=url_base + "/images/generations",
            headers=headers,
            body=dump_json(fields),
            transformer_metadata=metadata,
        )

    files = [_image_file(url, i) for i, url in enumerate(images)]
    form = {k: str(v) for k, v in fields.items()}
    encoded = httpx.Request(
        "POST",
        url_base + "/images/edits",
        data=form,
        files=[(f.field_name, (f.filename, f.data, f.content_type)) for f in files],
    )
    headers["Content-Type"] = encoded.headers["Content-Type"]
    logger.debug("Routing image request with %d input images to /images/edits", len(files))
    return HttpRequest(
        method="POST",
        url=url_base + "/images/edits",
        headers=headers,
        body=encoded.read(),
        form=form,
        files=files,
        transformer_metadata=metadata,
    )


def _image_file(url: str, index: int) -> MultipartFile:
    parsed = parse_data_url(url)
    if parsed is None:
        raise UnsupportedOperationError("image edits require inline (data URL) images")
    try:
        data = base64.b64decode(parsed.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestError(f"invalid base64 image data: {e}") from e
    extension = parsed.media_type.split("/")[-1]
    return MultipartFile(
        field_name="image[]",
        filename=f"image_{index}.{extension}",
        content_type=parsed.media_type,
        data=data,
    )


def parse_image_response(payload: Dict[str, Any], metadata: Optional[TransformerMetadata]) -> Response:
    """Convert an Images API response into a chat-shaped canonical response."""
    metadata = metadata or TransformerMetadata()
    output_format = payload.get("output_format") or metadata.get(MetadataKey.IMAGE_OUTPUT_FORMAT)
    media_type = image_format_media_type(output_format)

    parts = []
    for item in payload.get("data") or []:
        if item.get("b64_json"):
            parts.append(ContentPart.image_part(build_data_url(media_type, item["b64_json"])))
        elif item.get("url"):
            parts.append(ContentPart.image_part(item["url"]))

    created = payload.get("created") or 0
    response = Response(
        id=f"img-{created}",
        object="chat.completion",
        created=created,
        model=metadata.get(MetadataKey.MODEL) or DEFAULT_IMAGE_MODEL_NAME,
        choices=[Choice(
            index=0,
            message=Message(role=Role.ASSISTANT.value, content=parts),
            finish_reason=FinishReason.STOP.value,
        )],
    )
    usage = payload.get("usage")
    if isinstance(usage, dict):
        response.usage = Usage(
            prompt_tokens=int(usage.get("input_tokens") or 0),
            completion_tokens=int(usage.get("output_tokens") or 0),
        )
    return response
