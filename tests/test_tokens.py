from types import SimpleNamespace

import pytest

from mapreducer.core.model import tokens
from mapreducer.core.model.tokens import count_tokens, get_encoding, token_counter_for


@pytest.fixture
def char_encoding(monkeypatch):
    """
    Replaces tiktoken encodings with one token per character.
    """
    loaded = []

    def fake_get_encoding(encoding):
        loaded.append(encoding)
        return SimpleNamespace(encode=lambda text, disallowed_special=(): list(text))

    monkeypatch.setattr(tokens, "get_encoding", fake_get_encoding)
    return loaded


def test_unknown_encoding_rejected():
    with pytest.raises(ValueError, match="Unknown encoding"):
        get_encoding("gpt2-ish")


def test_counter_rejects_unknown_encoding_up_front():
    with pytest.raises(ValueError):
        token_counter_for("nope")


def test_count_tokens_uses_encoding(char_encoding):
    assert count_tokens("hello", "cl100k") == 5
    assert char_encoding == ["cl100k"]


def test_counter_is_bound_to_encoding(char_encoding):
    counter = token_counter_for("o200k")
    assert counter("abc") == 3
    assert set(char_encoding) == {"o200k"}
