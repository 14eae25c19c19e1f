"""
Visual-classification providers.

Each provider takes a base64-encoded image and returns a VisionAnalysis
(labels, logos, optional per-request error). The classifier only sees that
normalized shape, so swapping providers is a configuration change.

Supported providers:
  - google  (default) Google Cloud Vision images:annotate
  - claude  Anthropic Messages API with an image content block

Adding a new provider:
  1. Write a class with `async def analyze(self, image_base64, media_type) -> VisionAnalysis`.
  2. Register a factory for it in _PROVIDERS.
  3. Set VISION_PROVIDER=<provider> in the environment.

Environment variables
---------------------
VISION_PROVIDER              Which provider to build (default: "google").
GOOGLE_VISION_ACCESS_TOKEN   OAuth token for Cloud Vision.
ANTHROPIC_API_KEY            API key for the Claude provider.
"""

import json
import logging
import os
from typing import Callable, Optional, Protocol

import anthropic
import httpx

from mailsift.config import VISION_MAX_LABEL_RESULTS, VISION_MAX_LOGO_RESULTS
from mailsift.models.images import VisionAnalysis, VisionAnnotation

logger = logging.getLogger(__name__)

GOOGLE_VISION_URL = "https://vision.googleapis.com/v1/images:annotate"

CLAUDE_MODEL = "claude-haiku-4-5"
CLAUDE_MAX_TOKENS = 1024


class InvalidVisionResponse(Exception):
    """The provider answered, but not with anything we can interpret."""


class VisionClassifier(Protocol):
    async def analyze(self, image_base64: str, media_type: str = "image/jpeg") -> VisionAnalysis: ...


# ---------------------------------------------------------------------------
# Google Cloud Vision
# ---------------------------------------------------------------------------

def build_google_request(image_base64: str) -> dict:
    return {
        "requests": [
            {
                "image": {"content": image_base64},
                "features": [
                    {"type": "LOGO_DETECTION", "maxResults": VISION_MAX_LOGO_RESULTS},
                    {"type": "LABEL_DETECTION", "maxResults": VISION_MAX_LABEL_RESULTS},
                    {"type": "IMAGE_PROPERTIES", "maxResults": 1},
                ],
            }
        ]
    }


def parse_google_response(body: dict) -> VisionAnalysis:
    """
    Normalize an images:annotate response.

    Raises InvalidVisionResponse when there is no responses[0] entry.
    """
    responses = (body or {}).get("responses") or []
    if not responses or not responses[0]:
        raise InvalidVisionResponse("Invalid Vision API response")

    result = responses[0]
    if result.get("error"):
        return VisionAnalysis(error=result["error"].get("message") or "Vision API error")

    # imagePropertiesAnnotation carries colors only; size checks happen on the file
    return VisionAnalysis(
        labels=[
            VisionAnnotation(description=a.get("description", ""), score=a.get("score", 0.0))
            for a in result.get("labelAnnotations") or []
        ],
        logos=[
            VisionAnnotation(description=a.get("description", ""), score=a.get("score", 0.0))
            for a in result.get("logoAnnotations") or []
        ],
    )


class GoogleVisionClient:
    def __init__(self, access_token: str, url: str = GOOGLE_VISION_URL):
        self.access_token = access_token
        self.url = url

    async def analyze(self, image_base64: str, media_type: str = "image/jpeg") -> VisionAnalysis:
        async with httpx.AsyncClient(timeout=None) as client:
            response = await client.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
                json=build_google_request(image_base64),
            )
            response.raise_for_status()
            return parse_google_response(response.json())


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------

CLAUDE_PROMPT = f"""\
You are screening images found in emails. Describe this image the way an
image-labelling service would.

Return:
- labels: up to {VISION_MAX_LABEL_RESULTS} short lowercase labels for what the image shows
  (e.g. "logo", "icon", "button", "signature", "qr code", "person", "landscape"),
  each with a confidence score from 0.0 to 1.0.
- logos: up to {VISION_MAX_LOGO_RESULTS} brand or company logos you recognise, each with
  the brand name as description and a confidence score. Use an empty list if none.

Respond with ONLY valid JSON matching this schema:
{{
  "labels": [{{"description": string, "score": float}}],
  "logos": [{{"description": string, "score": float}}]
}}
"""


def parse_claude_text(raw_text: str) -> VisionAnalysis:
    json_text = raw_text.strip()
    # Strip markdown code fences if present
    if json_text.startswith("```"):
        lines = json_text.split("\n")
        lines = [ln for ln in lines if not ln.strip().startswith("```")]
        json_text = "\n".join(lines).strip()

    try:
        parsed = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise InvalidVisionResponse(f"Claude returned invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise InvalidVisionResponse("Claude response is not a JSON object")
    return VisionAnalysis(
        labels=parsed.get("labels") or [],
        logos=parsed.get("logos") or [],
    )


class ClaudeVisionClient:
    def __init__(self, api_key: Optional[str] = None, model: str = CLAUDE_MODEL):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model

    async def analyze(self, image_base64: str, media_type: str = "image/jpeg") -> VisionAnalysis:
        client = anthropic.AsyncAnthropic(api_key=self.api_key)
        response = await client.messages.create(
            model=self.model,
            max_tokens=CLAUDE_MAX_TOKENS,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": media_type,
                                "data": image_base64,
                            },
                        },
                        {"type": "text", "text": CLAUDE_PROMPT},
                    ],
                }
            ],
        )
        return parse_claude_text(response.content[0].text)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def _google_from_env() -> Optional[VisionClassifier]:
    token = os.getenv("GOOGLE_VISION_ACCESS_TOKEN", "").strip()
    return GoogleVisionClient(token) if token else None


def _claude_from_env() -> Optional[VisionClassifier]:
    api_key = os.getenv("ANTHROPIC_API_KEY", "").strip()
    return ClaudeVisionClient(api_key) if api_key else None


_PROVIDERS: dict[str, Callable[[], Optional[VisionClassifier]]] = {
    "google": _google_from_env,
    "claude": _claude_from_env,
}


def vision_classifier_from_env(provider: Optional[str] = None) -> Optional[VisionClassifier]:
    """
    Build the configured vision provider, or None when its credentials are absent.

    Priority for the provider name: argument, VISION_PROVIDER env var, "google".
    Raises ValueError for unknown provider names.
    """
    resolved = (provider or os.getenv("VISION_PROVIDER", "google")).lower().strip()
    factory = _PROVIDERS.get(resolved)
    if factory is None:
        raise ValueError(
            f"Unknown vision provider {resolved!r}. "
            f"Supported providers: {sorted(_PROVIDERS)}"
        )
    client = factory()
    if client is None:
        logger.warning(f"Vision provider {resolved!r} has no credentials configured")
    return client
