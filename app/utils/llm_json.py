"""
Tolerant JSON extraction for generated text.

Models wrap JSON in markdown fences, prepend prose, leave trailing commas
and occasionally emit ``//`` or ``/* */`` comments. :func:`extract_json`
undoes all of that before handing the text to :func:`json.loads`; anything
still unparseable raises :class:`GenerationMalformedError`, which callers
route to their deterministic fallback.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from app.domain.exceptions import GenerationMalformedError

logger = logging.getLogger(__name__)

_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def strip_code_fences(text: str) -> str:
    """Drop markdown fence lines (```json ... ```)."""
    cleaned = text.strip()
    if "```" not in cleaned:
        return cleaned
    lines = [ln for ln in cleaned.split("\n") if not ln.strip().startswith("```")]
    return "\n".join(lines).strip()


def strip_comments(text: str) -> str:
    """Remove ``//`` line comments and ``/* */`` blocks outside of string literals."""
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def find_balanced(text: str) -> str | None:
    """
    Return the first balanced ``{...}`` block, or the first ``[...]`` when
    the text holds no object. Brackets inside strings are ignored.
    """
    for opener in ("{", "["):
        start = text.find(opener)
        if start == -1:
            continue
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch in "{[":
                depth += 1
            elif ch in "}]":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        return None
    return None


def extract_json(text: str | None) -> Any:
    """
    Parse the JSON payload embedded in *text*.

    Raises
    ------
    GenerationMalformedError
        When no balanced JSON block can be found or it does not parse.
    """
    if not text or not text.strip():
        raise GenerationMalformedError("Generated text is empty")

    cleaned = strip_comments(strip_code_fences(text))
    block = find_balanced(cleaned)
    if block is None:
        raise GenerationMalformedError(
            "No balanced JSON block in generated text",
            detail={"preview": text[:200]},
        )

    block = _TRAILING_COMMA_RE.sub(r"\1", block)
    try:
        return json.loads(block)
    except json.JSONDecodeError as exc:
        logger.debug("JSON repair failed at pos %s: %s", exc.pos, exc.msg)
        raise GenerationMalformedError(
            f"Generated JSON does not parse: {exc.msg}",
            detail={"position": exc.pos, "preview": block[:200]},
        ) from exc
