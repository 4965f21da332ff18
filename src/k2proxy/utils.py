"""Utility functions for the K2 proxy."""

import re
import logging
from typing import Optional, Pattern, Tuple

logger = logging.getLogger(__name__)

REASONING_OPEN_TAG = '<details type="reasoning"'
REASONING_CLOSE_TAG = "</details>"
ANSWER_OPEN_TAG = "<answer>"
ANSWER_CLOSE_TAG = "</answer>"

# Matched at a known tag offset, never searched, so extraction stays linear
REASONING_PATTERN = re.compile(
    r'<details type="reasoning"[^>]*>.*?<summary>.*?</summary>(.*?)</details>',
    re.DOTALL,
)
OPEN_REASONING_PATTERN = re.compile(
    r'<details type="reasoning"[^>]*>.*?<summary>.*?</summary>(.*)',
    re.DOTALL,
)
ANSWER_PATTERN = re.compile(r"<answer>(.*?)</answer>", re.DOTALL)


def _last_match(
    pattern: Pattern, content: str, open_tag: str, close_tag: Optional[str] = None
):
    """
    Return the match of ``pattern`` starting at the last usable ``open_tag``.

    Concatenated cumulative snapshots repeat every block, so the last
    complete block is the one wanted. With ``close_tag`` given, only opening
    tags before the last closing tag are tried.
    """
    end = len(content)
    if close_tag is not None:
        end = content.rfind(close_tag)
        if end == -1:
            return None
    pos = content.rfind(open_tag, 0, end)
    while pos != -1:
        match = pattern.match(content, pos)
        if match:
            return match
        pos = content.rfind(open_tag, 0, pos)
    return None


def _strip_partial_close_tag(text: str) -> str:
    """Hold back a trailing prefix of the closing tag that has not fully arrived."""
    for size in range(len(REASONING_CLOSE_TAG) - 1, 0, -1):
        if text.endswith(REASONING_CLOSE_TAG[:size]):
            return text[:-size]
    return text


def extract_reasoning_and_answer(content: str) -> Tuple[str, str]:
    """
    Split a cumulative snapshot into its reasoning and answer sections.

    A closed reasoning block always wins. While no block is closed yet, the
    text after the summary of the open block is returned so reasoning can
    stream before the upstream closes it. The answer needs a complete
    ``<answer>...</answer>`` pair.

    Args:
        content: The full generated text as of the latest upstream event

    Returns:
        A ``(reasoning, answer)`` pair, each trimmed and empty when the
        corresponding block is absent
    """
    if not content or not isinstance(content, str):
        return "", ""

    reasoning_match = _last_match(
        REASONING_PATTERN, content, REASONING_OPEN_TAG, REASONING_CLOSE_TAG
    )
    if reasoning_match:
        reasoning = reasoning_match.group(1).strip()
    else:
        open_match = _last_match(OPEN_REASONING_PATTERN, content, REASONING_OPEN_TAG)
        reasoning = (
            _strip_partial_close_tag(open_match.group(1)).strip() if open_match else ""
        )

    answer_match = _last_match(ANSWER_PATTERN, content, ANSWER_OPEN_TAG, ANSWER_CLOSE_TAG)
    answer = answer_match.group(1).strip() if answer_match else ""

    return reasoning, answer


def calculate_delta_content(previous: str, current: str) -> str:
    """
    Return the part of ``current`` beyond the length of ``previous``.

    This is a suffix-by-length computation, not a diff: it assumes the section
    only grows by appending. A ``current`` shorter than ``previous`` yields an
    empty delta.
    """
    if not previous:
        return current
    if not current:
        return ""
    return current[len(previous):]


def normalize_newlines(text: str) -> str:
    """Turn literal backslash-n sequences into real newlines."""
    return text.replace("\\n", "\n")
