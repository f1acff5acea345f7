"""Shared utility functions for Plainly."""

import json
import re


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences wrapping JSON from LLM responses."""
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```\w*\n?", "", text)
        text = re.sub(r"\n?```$", "", text)
    return text.strip()


def parse_structured_output(raw: dict | str | None) -> dict | str | None:
    """Return a structured output as a dict when it is a JSON object.

    The extraction service answers with JSON strings; older deployments
    return plain text. Anything that does not decode to an object is kept
    as the original string.
    """
    if raw is None or isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(strip_code_fences(raw))
    except (json.JSONDecodeError, TypeError):
        return raw
    return parsed if isinstance(parsed, dict) else raw


def summary_headline(summary: dict | str | None) -> str | None:
    """Pick the one-line gist of a summary for title generation."""
    if isinstance(summary, dict):
        for key in ("gist", "one_line"):
            value = summary.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
    if isinstance(summary, str) and summary.strip():
        return summary.strip()
    return None
