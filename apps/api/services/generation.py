"""HTML generation through the OpenAI chat completions API."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from openai import APIStatusError, AsyncOpenAI, OpenAIError, RateLimitError

from config import settings
from services.errors import UpstreamGenerationError, UpstreamQuotaExceeded

logger = logging.getLogger(__name__)

BASE_PROMPT = """
You are an expert front-end engineer who turns sketches, screenshots and ideas into
working single-file HTML. Return ONE complete HTML document with inline CSS and
JavaScript. Do not reference external images; draw with CSS, SVG or emoji instead.
Do not explain the result. Output only the HTML.
"""

MODE_PROMPTS: Dict[str, str] = {
    "web": "Build a responsive desktop-first web page or interactive web app.",
    "mobile": "Build a mobile app screen at 390px width with touch-sized controls and a native app feel.",
    "social": "Build a 1080x1080 social media post as a single fixed-size, visually striking composition.",
    "logo": "Build a centered logo presentation using inline SVG, with the mark and a wordmark.",
}

_FENCE_RE = re.compile(r"```(?:html)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_DOCUMENT_RE = re.compile(r"(<!DOCTYPE html.*?</html>|<html.*?</html>)", re.DOTALL | re.IGNORECASE)


def get_openai_client(api_key: str) -> Optional[AsyncOpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(api_key=api_key)


def extract_html(text: str) -> str:
    """Pull the HTML document out of a model response."""
    content = str(text or "").strip()
    fenced = _FENCE_RE.search(content)
    if fenced:
        content = fenced.group(1).strip()
    document = _DOCUMENT_RE.search(content)
    if document:
        return document.group(1).strip()
    return content


def build_messages(
    prompt: str,
    image_base64: Optional[str],
    mime_type: Optional[str],
    mode: str,
) -> List[Dict[str, Any]]:
    system_prompt = BASE_PROMPT.strip() + "\n\n" + MODE_PROMPTS.get(mode, MODE_PROMPTS["web"])
    request_text = prompt.strip() if prompt and prompt.strip() else "Bring this to life as a working HTML artifact."

    user_content: List[Dict[str, Any]] = [{"type": "text", "text": request_text}]
    if image_base64:
        user_content.append({
            "type": "image_url",
            "image_url": {
                "url": f"data:{mime_type or 'image/png'};base64,{image_base64}"
            }
        })

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_content},
    ]


async def generate(
    prompt: str,
    image_base64: Optional[str] = None,
    mime_type: Optional[str] = None,
    mode: str = "web",
    client: Optional[AsyncOpenAI] = None,
) -> str:
    """Generate an HTML document for the prompt and optional image."""
    client = client or get_openai_client(settings.OPENAI_API_KEY)
    if client is None:
        raise UpstreamGenerationError("Generation service is not configured.")

    try:
        response = await client.chat.completions.create(
            model=settings.GENERATION_MODEL,
            messages=build_messages(prompt, image_base64, mime_type, mode),
            max_tokens=settings.GENERATION_MAX_TOKENS,
        )
    except RateLimitError as exc:
        logger.warning("Generation quota exceeded: %s", exc)
        raise UpstreamQuotaExceeded() from exc
    except APIStatusError as exc:
        logger.error("Generation API error (%s): %s", exc.status_code, exc)
        if exc.status_code == 429:
            raise UpstreamQuotaExceeded() from exc
        raise UpstreamGenerationError("Failed to generate content.") from exc
    except OpenAIError as exc:
        logger.error("Error in generation call: %s", exc)
        raise UpstreamGenerationError("Failed to generate content.") from exc

    content = response.choices[0].message.content if response.choices else None
    html = extract_html(content or "")
    if not html:
        raise UpstreamGenerationError("Generation returned no HTML.")
    return html
