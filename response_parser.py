"""
Response Parser — Turns a raw Gemini reply into a TurnResult.

The model is asked for a bare JSON object, but replies sometimes arrive
wrapped in a markdown code fence (```json ... ```). Parsing never raises:
anything that is not a JSON object with both fields filled in comes back
as None, and the raw text is logged for diagnosis.
"""

import re
import json
from typing import NamedTuple, Optional

from game_log import log

FENCE_RE = re.compile(r'^```[\w+-]*[ \t]*\n?(.*?)\n?\s*```$', re.DOTALL)

# Accepted spellings for each field; the system instruction asks for the first.
SCENE_KEYS = ("sceneDescription", "sceneText", "scene_description", "scene_text")
IMAGE_PROMPT_KEYS = ("imagePrompt", "image_prompt")


class TurnResult(NamedTuple):
    scene_text: str
    image_prompt: str


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ``` fence (and its language tag) if present."""
    text = text.strip()
    match = FENCE_RE.match(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text


def _first_text(data: dict, keys) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def parse_turn_response(raw: str) -> Optional[TurnResult]:
    """
    Parse a raw model reply.

    Returns:
        TurnResult(scene_text, image_prompt), or None when the payload is
        malformed or either field is missing/empty.
    """
    if not raw or not raw.strip():
        return None

    json_str = strip_code_fence(raw)
    try:
        parsed = json.loads(json_str)
    except (ValueError, RecursionError) as e:
        log(f"[Parser] Failed to parse response JSON: {e}. Raw response: {raw[:500]!r}", "error")
        return None

    if not isinstance(parsed, dict):
        log(f"[Parser] Response is not a JSON object: {raw!r}", "warning")
        return None

    scene_text = _first_text(parsed, SCENE_KEYS)
    image_prompt = _first_text(parsed, IMAGE_PROMPT_KEYS)
    if scene_text is None or image_prompt is None:
        log(f"[Parser] Parsed JSON does not match the turn structure: {parsed!r}", "warning")
        return None

    return TurnResult(scene_text=scene_text, image_prompt=image_prompt)
