from __future__ import annotations

import random

import pytest

from loom.remote.prompt import PromptDetector

PROMPT = "[sudo] password for user:"


def test_prompt_split_across_two_chunks() -> None:
    d = PromptDetector(PROMPT)
    assert d.match("Command 1\n[sudo] password") is False
    assert d.match(" for user:") is True


def test_unrelated_text_never_matches() -> None:
    d = PromptDetector(PROMPT)
    for chunk in ["some othercommand\n", "foo\n", "bar"]:
        assert d.match(chunk) is False


@pytest.mark.parametrize("pieces", [1, 2, 3])
def test_every_split_of_the_prompt_matches_on_last_chunk(pieces: int) -> None:
    data = PROMPT.encode()
    n = len(data)
    cuts_list = []
    if pieces == 1:
        cuts_list = [()]
    elif pieces == 2:
        cuts_list = [(i,) for i in range(1, n)]
    else:
        cuts_list = [(i, j) for i in range(1, n) for j in range(i + 1, n)]

    for cuts in cuts_list:
        bounds = [0, *cuts, n]
        chunks = [data[a:b] for a, b in zip(bounds, bounds[1:])]
        d = PromptDetector(PROMPT)
        results = [d.match(c) for c in chunks]
        assert results[:-1] == [False] * (len(chunks) - 1)
        assert results[-1] is True


def test_byte_at_a_time() -> None:
    d = PromptDetector(PROMPT)
    data = ("noise\r\n" + PROMPT).encode()
    results = [d.match(data[i:i + 1]) for i in range(len(data))]
    assert results.count(True) == 1
    assert results[-1] is True


def test_near_miss_is_not_reported() -> None:
    stream = "[sudo] password for use:\n[sudo] password for user\n"
    for cut in range(len(stream) + 1):
        d = PromptDetector(PROMPT)
        assert d.match(stream[:cut]) is False
        assert d.match(stream[cut:]) is False


def test_fallback_to_shorter_prefix() -> None:
    # "aab" inside "aaab": the mismatch at the third "a" must keep "aa".
    d = PromptDetector("aab")
    assert d.match("aa") is False
    assert d.match("ab") is True

    d = PromptDetector("abac")
    assert d.match("ababa") is False
    assert d.match("c") is True


def test_cursor_tracks_partial_match() -> None:
    d = PromptDetector(PROMPT)
    d.match("xx[sudo] pass")
    assert d.cursor == len("[sudo] pass")
    d.match("zz")
    assert d.cursor == 0


def test_rearms_after_match() -> None:
    d = PromptDetector(PROMPT)
    assert d.match(PROMPT + "\nSorry, try again.\n[sudo] pass") is True
    assert d.cursor == len("[sudo] pass")
    assert d.match("word for user:") is True
    assert d.cursor == 0


def test_bytes_and_reset() -> None:
    d = PromptDetector(b"Password:")
    assert d.match(b"Pass") is False
    d.reset()
    assert d.match(b"word:") is False
    assert d.match(b"Password:") is True


def test_empty_pattern_rejected() -> None:
    with pytest.raises(ValueError):
        PromptDetector("")


def test_random_streams_agree_with_substring_search() -> None:
    rng = random.Random(1234)
    pattern = "abab"
    for _ in range(500):
        stream = "".join(rng.choice("ab ") for _ in range(rng.randint(0, 30)))
        cuts = sorted(rng.sample(range(len(stream) + 1), k=min(3, len(stream) + 1)))
        bounds = [0, *cuts, len(stream)]
        d = PromptDetector(pattern)
        seen = [d.match(stream[a:b]) for a, b in zip(bounds, bounds[1:])]
        assert any(seen) == (pattern in stream), stream
