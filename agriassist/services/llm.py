"""
Generative AI gateway.

Every AI flow (crop diagnosis, soil analysis, soil report OCR/chat, translation)
goes through `generate` so that key rotation, quota handling and JSON cleanup
live in one place.
"""
import base64
import binascii
import json
import logging
import os
import threading
from contextlib import nullcontext
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

import google.generativeai as genai
from pydantic import BaseModel, ValidationError

from agriassist.errors import ConfigError, ModelOutputError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
NO_OUTPUT_MESSAGE = "The AI model did not return a valid output."

Part = Union[str, Dict[str, Any]]
M = TypeVar("M", bound=BaseModel)

# genai.configure sets a process-wide key; hold this while a rotated key is in use
_KEY_LOCK = threading.Lock()


def get_gemini_api_keys() -> list:
    """Return a prioritized list of Gemini API keys.

    Supports either GEMINI_API_KEY (single) or GEMINI_API_KEYS (comma/newline-separated).
    Only the first whitespace-delimited token per entry is used so trailing
    comments in .env files do not leak into requests.
    """
    raw = os.getenv("GEMINI_API_KEYS", "") or os.getenv("GEMINI_API_KEY", "") or ""
    keys: list[str] = []
    for chunk in raw.replace(",", "\n").splitlines():
        token = chunk.strip()
        if not token:
            continue
        keys.append(token.split()[0])
    return keys


def get_model_name() -> str:
    return os.getenv("GEMINI_MODEL", DEFAULT_MODEL)


def parse_data_uri(uri: str) -> Tuple[str, bytes]:
    """Split a `data:<mime>;base64,<payload>` URI into its MIME type and raw bytes."""
    if not uri or not uri.startswith("data:"):
        raise ValueError("Expected a data URI of the form 'data:<mimetype>;base64,<encoded_data>'")
    header, sep, payload = uri[5:].partition(",")
    if not sep:
        raise ValueError("Malformed data URI: missing ',' separator")
    mime_type, _, encoding = header.partition(";")
    if encoding.lower() != "base64":
        raise ValueError("Data URI must use base64 encoding")
    if not payload.strip():
        raise ValueError("Data URI has an empty payload")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Data URI payload is not valid base64: {e}")
    return (mime_type.strip().lower() or "application/octet-stream"), data


def media_part(mime_type: str, data: bytes) -> Dict[str, Any]:
    return {"mime_type": mime_type, "data": data}


def extract_json_object(content: str) -> Dict[str, Any]:
    """Extract and parse the first JSON object from a model reply.

    Handles replies wrapped in Markdown code fences and replies where the JSON
    object is followed by extra commentary.
    """
    txt = (content or "").strip()
    if txt.startswith("```json"):
        txt = txt[7:]
    if txt.startswith("```"):
        txt = txt[3:]
    if txt.endswith("```"):
        txt = txt[:-3]
    txt = txt.strip()

    try:
        data = json.loads(txt)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    # Fallback: first balanced {...} block, ignoring braces inside strings
    start = txt.find("{")
    if start == -1:
        raise ModelOutputError("No JSON object found in model output")
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(txt)):
        ch = txt[i]
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
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(txt[start:i + 1])
                except json.JSONDecodeError as e:
                    raise ModelOutputError(f"Failed to parse JSON from model output: {e}")
    raise ModelOutputError("No complete JSON object found in model output")


def _is_quota_error(exc: Exception) -> bool:
    code = getattr(exc, "code", None)
    if code == 429:
        return True
    msg = str(exc).lower()
    return "429" in msg or "quota" in msg or "rate limit" in msg or "resource_exhausted" in msg


def generate(parts: List[Part], *, temperature: float = 0.4, json_output: bool = False) -> str:
    """Send prompt text and inline media to Gemini and return the reply text.

    Configured keys are tried in order; a quota/rate-limit failure moves on to
    the next key, any other provider failure is raised immediately.
    """
    api_keys = get_gemini_api_keys()
    if not api_keys:
        raise ConfigError("GEMINI_API_KEY not configured")

    generation_config: Dict[str, Any] = {"temperature": temperature}
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    model_name = get_model_name()
    last_error: Optional[Exception] = None
    # a single key never changes the global config, so only rotation needs the lock
    key_guard = _KEY_LOCK if len(api_keys) > 1 else nullcontext()
    for idx, key in enumerate(api_keys):
        try:
            with key_guard:
                genai.configure(api_key=key)
                model = genai.GenerativeModel(model_name, generation_config=generation_config)
                response = model.generate_content(parts)
        except Exception as e:
            if _is_quota_error(e):
                logger.warning("Gemini key #%d hit a quota/rate limit, trying next key", idx + 1)
                last_error = e
                continue
            logger.error("Gemini request failed: %s", e)
            raise UpstreamError(f"AI provider error: {e}")

        try:
            text = response.text
        except ValueError:
            # raised by the SDK when the candidate was blocked or carries no text part
            text = ""
        if not text or not text.strip():
            raise ModelOutputError(NO_OUTPUT_MESSAGE)
        return text

    raise UpstreamError(f"All Gemini API keys are rate limited: {last_error}", 429)


def generate_structured(parts: List[Part], model_cls: Type[M], *, temperature: float = 0.4) -> M:
    """Generate a reply and validate it against `model_cls`."""
    text = generate(parts, temperature=temperature, json_output=True)
    data = extract_json_object(text)
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        logger.error("Model output failed %s validation: %s", model_cls.__name__, e)
        raise ModelOutputError(NO_OUTPUT_MESSAGE)
