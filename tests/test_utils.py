"""Unit tests for retry and sparse keyword encoding."""
import pytest

from app.utils.retry import backoff_delay, with_retry
from app.utils.sparse_encoding import text_to_sparse_indices_values, tokenize


def test_with_retry_recovers_after_transient_errors():
    attempts = []
    sleeps = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("temporary")
        return "ok"

    assert with_retry(flaky, retries=3, backoff_seconds=0.5, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5, 1.0]


def test_with_retry_gives_up():
    def always_fails():
        raise TimeoutError("still down")

    with pytest.raises(TimeoutError):
        with_retry(always_fails, retries=2, sleep=lambda s: None)


def test_with_retry_does_not_retry_other_errors():
    calls = []

    def bad():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        with_retry(bad, retry_on=(ConnectionError,), sleep=lambda s: None)
    assert len(calls) == 1


def test_sparse_encoding_splits_identifiers():
    idx_whole, _ = text_to_sparse_indices_values("getUserName", mode="query")
    idx_part, _ = text_to_sparse_indices_values("user", mode="query")
    assert set(idx_part) <= set(idx_whole)


def test_sparse_doc_values_grow_with_term_frequency():
    idx, vals = text_to_sparse_indices_values("parse parse parse lexer", mode="doc")
    assert len(idx) == 2
    assert max(vals) > 1.0
    assert idx == sorted(idx)


def test_sparse_encoding_of_blank_text():
    assert text_to_sparse_indices_values("   ", mode="doc") == ([], [])


def test_backoff_delay_is_capped():
    assert backoff_delay(0, 0.5) == 0.5
    assert backoff_delay(2, 0.5) == 2.0
    assert backoff_delay(10, 0.5) == 8.0


def test_tokenize_drops_language_keywords():
    tokens = tokenize("def load_config(self): return parse_yaml(path)")
    assert "def" not in tokens and "self" not in tokens and "return" not in tokens
    assert "load_config" in tokens and "config" in tokens and "yaml" in tokens
