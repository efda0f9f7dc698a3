"""
Clinivoice Backend: Provider Response Parser
=============================================

What:  Turns raw model output into a JSON object.
How:   Clean the text, then run three recovery strategies in order:
           (a) direct parse
           (b) first "{" to last "}" span
           (c) first brace-balanced block, found by a line-by-line scan
       The first strategy that yields a dict wins. Every strategy is a pure
       function `str -> Optional[dict]` so each can be tested on its own.
Who:   Called by every provider after a successful API call.

Inputs seen in practice:
    Models wrap JSON in prose ("Here is the note: {...} Let me know..."),
    emit trailing commas, or append a second object. Strategy (b) handles
    leading/trailing prose; (c) handles trailing junk that itself contains a
    closing brace.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, Optional, Sequence

from clinivoice.exceptions import ProviderEmptyResponse, ResponseParseError

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
# C0 controls except \t \n \r, plus DEL.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_ZERO_WIDTH = re.compile("[\u200b-\u200d\u2060\ufeff]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def fix_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def clean_response_text(text: str) -> str:
    """Strips code fences, control and zero-width characters, trailing commas."""
    cleaned = _CODE_FENCE.sub("", text)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _ZERO_WIDTH.sub("", cleaned)
    cleaned = fix_trailing_commas(cleaned)
    return cleaned.strip()


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text, strict=False)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


# ── Strategies ────────────────────────────────────────────────────────────


def parse_direct(text: str) -> Optional[Dict[str, Any]]:
    return _loads_object(text)


def parse_outer_span(text: str) -> Optional[Dict[str, Any]]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return _loads_object(fix_trailing_commas(text[start : end + 1]))


def parse_balanced_block(text: str) -> Optional[Dict[str, Any]]:
    """
    Finds the first brace-balanced block by scanning line by line.

    Braces inside JSON string literals are ignored, so a value such as
    "pain {left side}" does not throw the depth count off.
    """
    collected = []
    depth = 0
    started = False
    in_string = False
    escaped = False

    for line in text.splitlines(keepends=True):
        if not started:
            start = line.find("{")
            if start == -1:
                continue
            started = True
            line = line[start:]

        end_index = None
        for index, char in enumerate(line):
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end_index = index
                    break

        if end_index is not None:
            collected.append(line[: end_index + 1])
            return _loads_object(fix_trailing_commas("".join(collected)))
        collected.append(line)

    return None


STRATEGIES: Sequence[Callable[[str], Optional[Dict[str, Any]]]] = (
    parse_direct,
    parse_outer_span,
    parse_balanced_block,
)


def parse_note_json(raw_text: Optional[str]) -> Dict[str, Any]:
    """
    Cleans `raw_text` and returns the first JSON object any strategy recovers.

    Raises:
        ProviderEmptyResponse: the text is empty after cleaning
        ResponseParseError: no strategy produced a JSON object
    """
    if raw_text is None or not raw_text.strip():
        raise ProviderEmptyResponse("Provider returned an empty response")

    cleaned = clean_response_text(raw_text)
    if not cleaned:
        raise ProviderEmptyResponse("Provider response was empty after cleaning")

    for strategy in STRATEGIES:
        result = strategy(cleaned)
        if result is not None:
            if strategy is not parse_direct:
                logger.debug("Recovered JSON with %s", strategy.__name__)
            return result

    raise ResponseParseError(
        "Could not extract a JSON object from the provider response",
        context={"preview": cleaned[:200]},
    )
