"""Pull a JSON payload out of free-form generation-service text.

Models wrap their JSON in prose, markdown fences, or both. Strategies are
tried in order and the first match wins:

  1. fenced block      ```json ... ```  (tag optional) → inner text, trimmed
  2. greedy object     first "{" … last "}"
  3. greedy array      first "[" … last "]"

Nothing matched → None. The caller treats that as a terminal failure.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")
_ARRAY = re.compile(r"\[[\s\S]*\]")


def extract_json(text: str | None) -> str | None:
    """Return the JSON-looking substring of *text*, or None if there is none."""
    if not text or not text.strip():
        return None

    match = _FENCED.search(text)
    if match:
        inner = match.group(1).strip()
        if inner:
            return inner

    match = _OBJECT.search(text)
    if match:
        return match.group(0).strip()

    match = _ARRAY.search(text)
    if match:
        return match.group(0).strip()

    logger.debug("no JSON found in reply len=%d", len(text))
    return None
