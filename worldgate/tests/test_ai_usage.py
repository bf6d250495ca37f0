"""Tests for the usage-gated text generation wrapper."""
from unittest.mock import Mock

import pytest

from worldgate.core.errors import QuotaExceededError, RateLimitError
from worldgate.features.ai.service import estimate_tokens, run_with_usage_limit


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_generate_called_when_allowed(gate, store):
    generate = Mock(return_value="A misty harbour town.")

    result = run_with_usage_limit(gate, "writer", "gpt-4o-mini", "generate", "x" * 40, generate)

    assert result == "A misty harbour town."
    generate.assert_called_once_with("gpt-4o-mini", "x" * 40)
    assert store.get("writer").usage.tokens_used == 10


def test_disallowed_model_never_reaches_generator(gate):
    generate = Mock()

    with pytest.raises(QuotaExceededError) as exc:
        run_with_usage_limit(gate, "writer", "claude-3-opus-20240229", "generate", "prompt", generate)

    assert exc.value.message == (
        "Your current plan does not have access to this AI model. Please upgrade to use this feature."
    )
    generate.assert_not_called()


def test_rate_limit_raised_on_sixth_call(gate):
    generate = Mock(return_value="ok")
    for _ in range(5):
        run_with_usage_limit(gate, "fast", "gpt-4o-mini", "stream", "p", generate)

    with pytest.raises(RateLimitError):
        run_with_usage_limit(gate, "fast", "gpt-4o-mini", "stream", "p", generate)
    assert generate.call_count == 5
