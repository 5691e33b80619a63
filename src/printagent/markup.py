"""Reduce receipt HTML to printable plain text."""

from __future__ import annotations

import html
import re

_BLOCK_BREAKS = (
    (re.compile(r"<br\s*/?>", re.IGNORECASE), "\n"),
    (re.compile(r"</p\s*>", re.IGNORECASE), "\n\n"),
    (re.compile(r"</div\s*>", re.IGNORECASE), "\n"),
    (re.compile(r"</tr\s*>", re.IGNORECASE), "\n"),
    (re.compile(r"</t[dh]\s*>", re.IGNORECASE), "\t"),
)

_INVISIBLE_BLOCKS = re.compile(r"<(script|style|head)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_ANY_TAG = re.compile(r"<[^>]+>")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def html_to_text(markup: str) -> str:
    """Convert receipt markup to text, keeping line and cell structure.

    Line-producing tags become newlines, table cells become tabs, all other
    tags are dropped and each line is trimmed.
    """
    text = _INVISIBLE_BLOCKS.sub("", markup)
    for pattern, replacement in _BLOCK_BREAKS:
        text = pattern.sub(replacement, text)
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text).replace("\xa0", " ")

    lines = [line.strip() for line in text.replace("\r\n", "\n").split("\n")]
    text = "\n".join(lines).strip("\n")
    return _EXCESS_BLANK_LINES.sub("\n\n", text)


__all__ = ["html_to_text"]
