"""
Usage Reconciliation

Normalizes each vendor's token accounting into canonical Usage and back.

Vendors disagree on whether cache reads and writes are part of the reported
input tokens. Anthropic excludes them (prompt = input + cache_write +
cache_read); several Anthropic-compatible hosts already include them
(prompt = input). The conversion is therefore parameterized by a platform
discriminator instead of assuming one formula.

Vendor-specific alias fields are folded into the canonical slot only when the
documented field is absent.
"""

from enum import Enum
from typing import Any, Dict, Optional

from protocol_transformer.canonical.types import (
    CompletionTokensDetails,
    PromptTokensDetails,
    Usage,
)


class UsagePlatform(str, Enum):
    """How a platform reports cache tokens relative to its input tokens."""
    EXCLUDES_CACHE = "excludes_cache"
    INCLUDES_CACHE = "includes_cache"


def _int(payload: Optional[Dict[str, Any]], key: str) -> int:
    if not payload:
        return 0
    value = payload.get(key)
    return int(value) if value else 0


def _build(
    prompt: int,
    completion: int,
    prompt_details: PromptTokensDetails,
    completion_details: CompletionTokensDetails,
) -> Usage:
    return Usage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        prompt_tokens_details=None if prompt_details.is_empty() else prompt_details,
        completion_tokens_details=None if completion_details.is_empty() else completion_details,
    )


# =============================================================================
# Anthropic
# =============================================================================


def from_anthropic_usage(
    payload: Optional[Dict[str, Any]],
    platform: UsagePlatform = UsagePlatform.EXCLUDES_CACHE,
) -> Optional[Usage]:
    """
    Convert an Anthropic `usage` object.

    Args:
        payload: Anthropic usage dict
        platform: Whether the host counts cache tokens inside input_tokens

    Returns:
        Usage or None when the payload is missing
    """
    if payload is None:
        return None

    input_tokens = _int(payload, "input_tokens")
    cache_write = _int(payload, "cache_creation_input_tokens")
    cache_read = _int(payload, "cache_read_input_tokens")
    # Moonshot alias, used only when the documented field is absent
    alias_cached = _int(payload, "cached_tokens")

    if platform == UsagePlatform.INCLUDES_CACHE:
        prompt = input_tokens
        cached = cache_read or alias_cached
    else:
        prompt = input_tokens + cache_write + cache_read
        cached = cache_read
        if not cache_read and alias_cached:
            prompt += alias_cached
            cached = alias_cached

    creation = payload.get("cache_creation") or {}
    prompt_details = PromptTokensDetails(
        cached_tokens=cached,
        write_cached_tokens=cache_write,
        write_cached_5m_tokens=_int(creation, "ephemeral_5m_input_tokens"),
        write_cached_1h_tokens=_int(creation, "ephemeral_1h_input_tokens"),
    )
    return _build(prompt, _int(payload, "output_tokens"), prompt_details, CompletionTokensDetails())


def to_anthropic_usage(usage: Optional[Usage]) -> Dict[str, Any]:
    """Render canonical usage in Anthropic's cache-excluding accounting."""
    if usage is None:
        return {"input_tokens": 0, "output_tokens": 0}

    cached = usage.cached_tokens
    write = usage.write_cached_tokens
    result: Dict[str, Any] = {
        "input_tokens": max(usage.prompt_tokens - cached - write, 0),
        "output_tokens": usage.completion_tokens,
        "cache_creation_input_tokens": write,
        "cache_read_input_tokens": cached,
    }
    details = usage.prompt_tokens_details
    if details and (details.write_cached_5m_tokens or details.write_cached_1h_tokens):
        result["cache_creation"] = {
            "ephemeral_5m_input_tokens": details.write_cached_5m_tokens,
            "ephemeral_1h_input_tokens": details.write_cached_1h_tokens,
        }
    return result


# =============================================================================
# OpenAI Chat Completions
# =============================================================================


def from_openai_usage(payload: Optional[Dict[str, Any]]) -> Optional[Usage]:
    """
    Convert an OpenAI-style `usage` object.

    prompt_tokens already includes cached tokens on every OpenAI-compatible
    host. `prompt_tokens_details.cached_tokens` is the documented cache field;
    the Moonshot `cached_tokens` and DeepSeek `prompt_cache_hit_tokens`
    aliases only fill it when it is absent.
    """
    if payload is None:
        return None

    prompt_raw = payload.get("prompt_tokens_details") or {}
    completion_raw = payload.get("completion_tokens_details") or {}

    cached = _int(prompt_raw, "cached_tokens")
    if not cached:
        cached = _int(payload, "cached_tokens") or _int(payload, "prompt_cache_hit_tokens")

    prompt_details = PromptTokensDetails(
        audio_tokens=_int(prompt_raw, "audio_tokens"),
        cached_tokens=cached,
        write_cached_tokens=_int(prompt_raw, "write_cached_tokens"),
    )
    completion_details = CompletionTokensDetails(
        audio_tokens=_int(completion_raw, "audio_tokens"),
        reasoning_tokens=_int(completion_raw, "reasoning_tokens"),
        accepted_prediction_tokens=_int(completion_raw, "accepted_prediction_tokens"),
        rejected_prediction_tokens=_int(completion_raw, "rejected_prediction_tokens"),
    )
    return _build(
        _int(payload, "prompt_tokens"),
        _int(payload, "completion_tokens"),
        prompt_details,
        completion_details,
    )


def to_openai_usage(usage: Usage) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "prompt_tokens": usage.prompt_tokens,
        "completion_tokens": usage.completion_tokens,
        "total_tokens": usage.total_tokens,
    }
    details = usage.prompt_tokens_details
    if details and not details.is_empty():
        prompt_details: Dict[str, Any] = {
            "cached_tokens": details.cached_tokens,
            "audio_tokens": details.audio_tokens,
        }
        if details.write_cached_tokens:
            prompt_details["write_cached_tokens"] = details.write_cached_tokens
        result["prompt_tokens_details"] = prompt_details
    completion = usage.completion_tokens_details
    if completion and not completion.is_empty():
        result["completion_tokens_details"] = {
            "reasoning_tokens": completion.reasoning_tokens,
            "audio_tokens": completion.audio_tokens,
            "accepted_prediction_tokens": completion.accepted_prediction_tokens,
            "rejected_prediction_tokens": completion.rejected_prediction_tokens,
        }
    return result


# =============================================================================
# OpenAI Responses
# =============================================================================


def from_responses_usage(payload: Optional[Dict[str, Any]]) -> Optional[Usage]:
    if payload is None:
        return None
    prompt_details = PromptTokensDetails(
        cached_tokens=_int(payload.get("input_tokens_details"), "cached_tokens"),
    )
    completion_details = CompletionTokensDetails(
        reasoning_tokens=_int(payload.get("output_tokens_details"), "reasoning_tokens"),
    )
    return _build(
        _int(payload, "input_tokens"),
        _int(payload, "output_tokens"),
        prompt_details,
        completion_details,
    )


def to_responses_usage(usage: Usage) -> Dict[str, Any]:
    return {
        "input_tokens": usage.prompt_tokens,
        "input_tokens_details": {"cached_tokens": usage.cached_tokens},
        "output_tokens": usage.completion_tokens,
        "output_tokens_details": {"reasoning_tokens": usage.reasoning_tokens},
        "total_tokens": usage.total_tokens,
    }


# =============================================================================
# Gemini
# =============================================================================


def from_gemini_usage(payload: Optional[Dict[str, Any]]) -> Optional[Usage]:
    """
    Convert Gemini `usageMetadata`.

    promptTokenCount already includes cachedContentTokenCount; thinking
    tokens are billed as output, so they join the completion count.
    """
    if payload is None:
        return None
    thoughts = _int(payload, "thoughtsTokenCount")
    prompt_details = PromptTokensDetails(cached_tokens=_int(payload, "cachedContentTokenCount"))
    completion_details = CompletionTokensDetails(reasoning_tokens=thoughts)
    return _build(
        _int(payload, "promptTokenCount"),
        _int(payload, "candidatesTokenCount") + thoughts,
        prompt_details,
        completion_details,
    )


def to_gemini_usage(usage: Usage) -> Dict[str, Any]:
    reasoning = usage.reasoning_tokens
    result: Dict[str, Any] = {
        "promptTokenCount": usage.prompt_tokens,
        "candidatesTokenCount": max(usage.completion_tokens - reasoning, 0),
        "totalTokenCount": usage.total_tokens,
    }
    if reasoning:
        result["thoughtsTokenCount"] = reasoning
    if usage.cached_tokens:
        result["cachedContentTokenCount"] = usage.cached_tokens
    return result
