"""Token-count heuristic shared by the prompt builder and the client.

The estimate is deliberately crude.  Text with at least one word counts
one token per whitespace-separated word, so an unbroken run of characters
costs a single token.  Empty or whitespace-only text counts one token per
four characters, rounded up.  The prompt builder's degradation steps are
tuned against exactly this bias, so it must not be "improved" in
isolation.  It undercounts multi-byte scripts written without spaces.
"""

from __future__ import annotations

# Characters per token assumed for text with no words.
CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """Estimate how many tokens ``text`` costs.

    Args:
        text: Any string, including the empty string.

    Returns:
        Word count if ``text`` has at least one whitespace-separated word,
        otherwise ``ceil(len(text) / 4)``.  Never negative.
    """
    words = len(text.split())
    if words > 0:
        return words
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN
