"""
Unit Tests for reasoning effort and thinking budget conversion
"""

import pytest

from protocol_transformer.reasoning import (
    budget_first,
    budget_to_effort,
    decode_gemini_signature,
    decode_openai_encrypted,
    effort_to_budget,
    encode_gemini_signature,
    encode_openai_encrypted,
    is_anthropic_redacted,
    is_anthropic_signature,
)


@pytest.mark.parametrize(
    "budget,effort",
    [(1024, "low"), (5000, "low"), (5001, "medium"), (15000, "medium"), (15001, "high"), (64000, "high")],
)
def test_budget_buckets(budget, effort):
    assert budget_to_effort(budget) == effort


def test_effort_to_budget_defaults():
    assert effort_to_budget("low") == 5000
    assert effort_to_budget("medium") == 15000
    assert effort_to_budget("high") == 30000
    assert effort_to_budget("minimal") == 15000


def test_effort_to_budget_overrides():
    assert effort_to_budget("high", {"high": 60000}) == 60000
    assert effort_to_budget("low", {"high": 60000}) == 5000


def test_effort_budgets_from_environment(monkeypatch):
    monkeypatch.setenv("TRANSFORMER_REASONING_EFFORT_BUDGETS", '{"low": 1000, "medium": 2000, "high": 3000}')
    assert effort_to_budget("high") == 3000


def test_budget_first():
    assert budget_first(2048, "high") == 2048
    assert budget_first(None, "low") == 5000
    assert budget_first(None, None) is None


def test_gemini_signature_tagging():
    tagged = encode_gemini_signature("abc")
    assert decode_gemini_signature(tagged) == "abc"
    assert not is_anthropic_redacted(tagged)
    assert is_anthropic_redacted("EqQBCkYIARgCKkA")
    assert encode_gemini_signature(None) is None
    assert decode_gemini_signature("EqQBCkYIARgCKkA") is None


def test_openai_encrypted_tagging():
    tagged = encode_openai_encrypted("enc")
    assert decode_openai_encrypted(tagged) == "enc"
    assert not is_anthropic_signature(tagged)
    assert not is_anthropic_signature(encode_gemini_signature("sig"))
    assert is_anthropic_signature("sig-abc")
    assert not is_anthropic_signature(None)
