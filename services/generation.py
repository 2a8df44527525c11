"""OpenRouter-backed image generation and chat completions.

The provider speaks the OpenAI wire format, but the exact place where it puts
an image (or the reply text) differs between models. Each known shape is a
small extraction strategy; strategies are tried in order until one yields a
value, so every shape can be tested on its own.
"""
from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple
from urllib.parse import unquote_to_bytes

import httpx
import openai
from flask import current_app
from openai import OpenAI

from errors import RemoteError

logger = logging.getLogger(__name__)

CHAT_PATH = "/chat/completions"
IMAGES_PATH = "/images"
DEFAULT_MIME_TYPE = "image/png"

IMAGE_APP_TITLE = "Classroom Image Generator"
CHAT_APP_TITLE = "Classroom Assistant Chat"

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")
_DATA_URL_RE = re.compile(r"^data:([^;,]+)?(;base64)?,(.+)$", re.DOTALL)


@dataclass
class GeneratedImage:
    image_data: str  # base64 without the data: prefix
    mime_type: str


def is_chat_model(model: str) -> bool:
    normalized = (model or "").lower()
    return "gemini" in normalized or "chat" in normalized or normalized.startswith("google/")


# --- image reference strategies -------------------------------------------
# Each strategy returns a data URL or a remote URL, or None when its shape
# does not match.


def _url_value(value) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        nested = value.get("url") or value.get("data_url")
        if isinstance(nested, str):
            return nested
    return None


def _inline_base64(data: str, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    return f"data:{mime_type};base64,{data}"


def _from_message_images(message: dict) -> Optional[str]:
    images = message.get("images")
    if not isinstance(images, list) or not images or not isinstance(images[0], dict):
        return None
    return _url_value(images[0].get("image_url"))


def _part_image_url(part: dict) -> Optional[str]:
    if part.get("type") != "image_url":
        return None
    return _url_value(part.get("image_url"))


def _part_output_image(part: dict) -> Optional[str]:
    if part.get("type") != "output_image":
        return None
    if isinstance(part.get("image_url"), str):
        return part["image_url"]
    data = part.get("data")
    if isinstance(data, str):
        return data if data.startswith("data:") else _inline_base64(data)
    return None


def _part_url(part: dict) -> Optional[str]:
    url = part.get("url")
    return url if isinstance(url, str) else None


def _part_data(part: dict) -> Optional[str]:
    data = part.get("data")
    if not isinstance(data, str):
        return None
    if data.startswith("data:"):
        return data
    if _BASE64_RE.match(data):
        return _inline_base64(data)
    return None


def _part_bare_image_url(part: dict) -> Optional[str]:
    value = part.get("image_url")
    return value if isinstance(value, str) else None


CONTENT_PART_STRATEGIES: Sequence[Tuple[str, Callable[[dict], Optional[str]]]] = (
    ("image_url_part", _part_image_url),
    ("output_image_part", _part_output_image),
    ("url_part", _part_url),
    ("data_part", _part_data),
    ("bare_image_url_part", _part_bare_image_url),
)


def _from_content_parts(message: dict) -> Optional[str]:
    content = message.get("content")
    if not isinstance(content, list):
        return None
    for part in content:
        if not isinstance(part, dict):
            continue
        for name, strategy in CONTENT_PART_STRATEGIES:
            found = strategy(part)
            if found:
                logger.debug("Image located via %s", name)
                return found
    return None


MESSAGE_IMAGE_STRATEGIES: Sequence[Tuple[str, Callable[[dict], Optional[str]]]] = (
    ("message_images", _from_message_images),
    ("content_parts", _from_content_parts),
)


def _payload_inline(item: dict) -> Optional[str]:
    data = item.get("b64_json") or item.get("b64") or item.get("image_base64")
    if not isinstance(data, str) or not data:
        return None
    return _inline_base64(data, item.get("mime_type") or DEFAULT_MIME_TYPE)


def _payload_url(item: dict) -> Optional[str]:
    url = item.get("url")
    return url if isinstance(url, str) and url else None


IMAGE_PAYLOAD_STRATEGIES: Sequence[Tuple[str, Callable[[dict], Optional[str]]]] = (
    ("inline_base64", _payload_inline),
    ("remote_url", _payload_url),
)


def _first_match(strategies, value) -> Optional[str]:
    for name, strategy in strategies:
        found = strategy(value)
        if found:
            logger.debug("Provider response matched %s", name)
            return found
    return None


def extract_image_reference(message) -> Optional[str]:
    """Find the image link in a chat-completion message, whatever its shape."""
    if not isinstance(message, dict):
        return None
    return _first_match(MESSAGE_IMAGE_STRATEGIES, message)


def extract_payload_reference(item) -> Optional[str]:
    """Find the image in one entry of an images-endpoint ``data`` list."""
    if not isinstance(item, dict):
        return None
    return _first_match(IMAGE_PAYLOAD_STRATEGIES, item)


# --- text strategies --------------------------------------------------------


def _text_from_string(message: dict) -> Optional[str]:
    content = message.get("content")
    return content.strip() if isinstance(content, str) else None


def _text_from_parts(message: dict) -> Optional[str]:
    content = message.get("content")
    if not isinstance(content, list):
        return None
    pieces = []
    for part in content:
        if isinstance(part, str):
            pieces.append(part)
        elif isinstance(part, dict):
            for key in ("text", "content", "value"):
                if isinstance(part.get(key), str):
                    pieces.append(part[key])
                    break
    return " ".join(pieces).strip()


def _text_from_text_field(message: dict) -> Optional[str]:
    text = message.get("text")
    return text.strip() if isinstance(text, str) else None


TEXT_STRATEGIES: Sequence[Tuple[str, Callable[[dict], Optional[str]]]] = (
    ("string_content", _text_from_string),
    ("content_parts", _text_from_parts),
    ("text_field", _text_from_text_field),
)


def extract_text(message) -> Optional[str]:
    if not isinstance(message, dict):
        return None
    return _first_match(TEXT_STRATEGIES, message)


# --- transport --------------------------------------------------------------


def _client(title: str) -> OpenAI:
    api_key = current_app.config.get("OPENROUTER_API_KEY")
    if not api_key:
        raise RemoteError("Missing OpenRouter API key. Set OPENROUTER_API_KEY in your environment.")
    return OpenAI(
        api_key=api_key,
        base_url=current_app.config["OPENROUTER_BASE_URL"],
        timeout=current_app.config["GENERATION_TIMEOUT"],
        max_retries=0,
        default_headers={
            "HTTP-Referer": current_app.config.get("APP_URL") or "http://localhost:5000",
            "X-Title": title,
        },
    )


def _provider_message(exc: openai.APIError, fallback: str) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message:
            return message
        nested = body.get("error")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]
    return fallback


def _post(path: str, body: dict, title: str, fallback: str) -> dict:
    client = _client(title)
    try:
        response = client.post(path, cast_to=httpx.Response, body=body)
    except openai.APIStatusError as exc:
        logger.warning("Provider returned %s for %s: %s", exc.status_code, path, exc.body)
        raise RemoteError(_provider_message(exc, fallback)) from exc
    except openai.APIError as exc:
        logger.warning("Provider call to %s failed: %s", path, exc)
        raise RemoteError(exc.message or fallback) from exc

    try:
        payload = response.json()
    except ValueError as exc:
        raise RemoteError("The provider returned a malformed response.") from exc
    if not isinstance(payload, dict):
        raise RemoteError("The provider returned a malformed response.")

    error = payload.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise RemoteError(message or fallback)
    return payload


def _first_choice_message(payload: dict) -> Optional[dict]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    return message if isinstance(message, dict) else None


def resolve_image_reference(reference: str) -> GeneratedImage:
    """Turn a data URL or remote URL into base64 image data."""
    if reference.startswith("data:"):
        match = _DATA_URL_RE.match(reference)
        if not match:
            raise RemoteError("Invalid data URL in provider response.")
        mime_type, is_base64, data = match.groups()
        if not is_base64:
            data = base64.b64encode(unquote_to_bytes(data)).decode("ascii")
        return GeneratedImage(image_data=data, mime_type=mime_type or DEFAULT_MIME_TYPE)

    try:
        response = httpx.get(
            reference,
            timeout=current_app.config["GENERATION_TIMEOUT"],
            follow_redirects=True,
        )
    except httpx.HTTPError as exc:
        logger.warning("Downloading generated image failed: %s", exc)
        raise RemoteError("Failed to download image from provider response.") from exc
    if not response.is_success:
        raise RemoteError("Failed to download image from provider response.")

    content_type = response.headers.get("content-type") or DEFAULT_MIME_TYPE
    mime_type = content_type.split(";")[0].strip() or DEFAULT_MIME_TYPE
    return GeneratedImage(
        image_data=base64.b64encode(response.content).decode("ascii"),
        mime_type=mime_type,
    )


def generate_image(prompt: str, base_image: Optional[str] = None) -> GeneratedImage:
    """Generate an image, optionally conditioned on ``base_image`` (a data URL)."""
    model = current_app.config["OPENROUTER_MODEL"]

    if is_chat_model(model):
        if base_image:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": base_image}},
            ]
        else:
            content = prompt
        payload = _post(
            CHAT_PATH,
            {
                "model": model,
                "messages": [{"role": "user", "content": content}],
                "modalities": ["image", "text"],
            },
            title=IMAGE_APP_TITLE,
            fallback="OpenRouter chat request failed",
        )
        reference = extract_image_reference(_first_choice_message(payload))
        if not reference:
            raise RemoteError("OpenRouter did not return an image link")
        return resolve_image_reference(reference)

    payload = _post(
        IMAGES_PATH,
        {"model": model, "prompt": prompt},
        title=IMAGE_APP_TITLE,
        fallback="OpenRouter request failed",
    )
    data = payload.get("data")
    item = data[0] if isinstance(data, list) and data else None
    if not item:
        raise RemoteError("OpenRouter did not return image data")
    reference = extract_payload_reference(item)
    if not reference:
        raise RemoteError("OpenRouter response missing base64 or URL data")
    return resolve_image_reference(reference)


def chat_complete(history: Iterable[Tuple[str, str]]) -> str:
    """Send ``(sender, content)`` pairs to the chat model and return its reply."""
    messages = []
    system_prompt = current_app.config.get("CHAT_SYSTEM_PROMPT")
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for sender, content in history:
        role = "user" if sender == "STUDENT" else "assistant"
        messages.append({"role": role, "content": content})

    payload = _post(
        CHAT_PATH,
        {
            "model": current_app.config["OPENROUTER_CHAT_MODEL"],
            "messages": messages,
            "modalities": ["text"],
            "top_p": 0.9,
        },
        title=CHAT_APP_TITLE,
        fallback="OpenRouter request failed",
    )
    text = extract_text(_first_choice_message(payload))
    if not text:
        raise RemoteError("OpenRouter returned an empty response")
    return text
