"""
Transformer Metadata

A typed key-value bag carrying vendor-specific fields that have no slot in
the canonical model. Keys are declared once, together with the value type
they accept, so a producer and its consumer cannot drift apart silently.
"""

from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple


class MetadataKey(str, Enum):
    """Documented transformer metadata keys."""
    # Anthropic inbound -> Anthropic outbound: system was an array of text blocks
    ANTHROPIC_SYSTEM_ARRAY_FORMAT = "anthropic_system_array_format"
    # Responses inbound -> Responses outbound: input was an item array, not a string
    RESPONSES_ARRAY_INPUT = "responses_array_input"
    RESPONSES_INCLUDE = "include"
    RESPONSES_MAX_TOOL_CALLS = "max_tool_calls"
    RESPONSES_PROMPT_CACHE_RETENTION = "prompt_cache_retention"
    RESPONSES_TRUNCATION = "truncation"
    RESPONSES_INCLUDE_OBFUSCATION = "include_obfuscation"
    # image_generation tool -> image response parser
    IMAGE_OUTPUT_FORMAT = "image_output_format"
    # OpenAI outbound request -> OpenAI outbound response parser
    OUTBOUND_FORMAT_TYPE = "outbound_format_type"
    MODEL = "model"
    # Gemini response -> choice metadata
    GEMINI_GROUNDING_METADATA = "gemini_grounding_metadata"


_VALUE_TYPES: Dict[MetadataKey, Tuple[type, ...]] = {
    MetadataKey.ANTHROPIC_SYSTEM_ARRAY_FORMAT: (bool,),
    MetadataKey.RESPONSES_ARRAY_INPUT: (bool,),
    MetadataKey.RESPONSES_INCLUDE: (list,),
    MetadataKey.RESPONSES_MAX_TOOL_CALLS: (int,),
    MetadataKey.RESPONSES_PROMPT_CACHE_RETENTION: (str,),
    MetadataKey.RESPONSES_TRUNCATION: (str,),
    MetadataKey.RESPONSES_INCLUDE_OBFUSCATION: (bool,),
    MetadataKey.IMAGE_OUTPUT_FORMAT: (str,),
    MetadataKey.OUTBOUND_FORMAT_TYPE: (str,),
    MetadataKey.MODEL: (str,),
    MetadataKey.GEMINI_GROUNDING_METADATA: (dict,),
}


def _check(key: Any, value: Any) -> MetadataKey:
    if not isinstance(key, MetadataKey):
        try:
            key = MetadataKey(key)
        except ValueError:
            raise KeyError(f"Unknown transformer metadata key: {key!r}") from None
    expected = _VALUE_TYPES[key]
    # bool is an int subclass; keep int slots strict
    if expected == (int,) and isinstance(value, bool):
        raise TypeError(f"Metadata key {key.value!r} expects int, got bool")
    if not isinstance(value, expected):
        raise TypeError(
            f"Metadata key {key.value!r} expects {expected[0].__name__}, "
            f"got {type(value).__name__}"
        )
    return key


class TransformerMetadata:
    """Typed metadata bag attached to requests, choices and HTTP requests."""

    def __init__(self, values: Optional[Dict[Any, Any]] = None):
        self._values: Dict[MetadataKey, Any] = {}
        for key, value in (values or {}).items():
            self.set(key, value)

    def set(self, key: MetadataKey, value: Any) -> None:
        self._values[_check(key, value)] = value

    def get(self, key: MetadataKey, default: Any = None) -> Any:
        return self._values.get(MetadataKey(key), default)

    def pop(self, key: MetadataKey, default: Any = None) -> Any:
        return self._values.pop(MetadataKey(key), default)

    def copy(self) -> "TransformerMetadata":
        clone = TransformerMetadata()
        clone._values = dict(self._values)
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {key.value: value for key, value in self._values.items()}

    def __contains__(self, key: object) -> bool:
        try:
            return MetadataKey(key) in self._values
        except ValueError:
            return False

    def __iter__(self) -> Iterator[MetadataKey]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __bool__(self) -> bool:
        return bool(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransformerMetadata):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return f"TransformerMetadata({self.to_dict()!r})"
