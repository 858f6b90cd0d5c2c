"""Streaming detection of a fixed prompt inside live command output.

Remote output arrives in arbitrarily sized chunks, so a prompt such as
``[sudo] password for alice:`` may be split across several reads. The
detector keeps a single cursor into the pattern (the number of leading
pattern bytes matched by the tail of everything seen so far) and advances it
byte by byte, falling back through a precomputed prefix table on mismatch.
Each call costs O(len(chunk)); consumed bytes are never re-scanned.
"""

from __future__ import annotations

from typing import List, Union


def _prefix_table(pattern: bytes) -> List[int]:
    """table[i] = length of the longest proper prefix of pattern[:i+1] that is
    also a suffix of it."""

    table = [0] * len(pattern)
    k = 0
    for i in range(1, len(pattern)):
        while k and pattern[i] != pattern[k]:
            k = table[k - 1]
        if pattern[i] == pattern[k]:
            k += 1
        table[i] = k
    return table


class PromptDetector:
    """Detect one literal pattern in a stream of chunks.

    >>> d = PromptDetector("[sudo] password for user:")
    >>> d.match("Command 1\\n[sudo] password")
    False
    >>> d.match(" for user:")
    True

    After a match the cursor rewinds to 0, so a later, independent
    occurrence is reported again.
    """

    def __init__(self, pattern: Union[str, bytes]):
        if isinstance(pattern, str):
            pattern = pattern.encode("utf-8")
        if not pattern:
            raise ValueError("prompt pattern must not be empty")
        self.pattern = bytes(pattern)
        self._table = _prefix_table(self.pattern)
        self.cursor = 0

    def reset(self) -> None:
        self.cursor = 0

    def match(self, chunk: Union[str, bytes]) -> bool:
        """Feed the next chunk; True if the pattern completed inside it."""

        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        pattern = self.pattern
        table = self._table
        n = len(pattern)
        k = self.cursor
        found = False
        for b in chunk:
            while k and b != pattern[k]:
                k = table[k - 1]
            if b == pattern[k]:
                k += 1
            if k == n:
                found = True
                k = 0
        self.cursor = k
        return found
