"""
Content classifier.

Decides whether a downloaded image is real content or noise (logos, icons,
tracking pixels, social badges, UI chrome). Stages, first decision wins:

  1. Tiny-file heuristic: files under 1 KB are tracking pixels.
  2. Vision call: base64-encode and send to the configured provider,
     bounded by a 30 s timeout.
  3. Response evaluation: provider error -> keep; any logo -> discard;
     exact non-content label above threshold -> discard; partial
     non-content term above threshold -> discard; otherwise keep.

Classification never causes a false discard through failure: every error
path returns keep=True with the error recorded on the verdict.
"""

import asyncio
import base64
import logging
import os
from typing import Optional

from mailsift.config import (
    MAX_VISION_PAYLOAD_CHARS,
    TINY_IMAGE_THRESHOLD_BYTES,
    VISION_TIMEOUT_SECONDS,
    PipelineConfig,
)
from mailsift.models.images import ClassificationVerdict, VisionAnalysis
from mailsift.services.vision import VisionClassifier

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lexicon
# ---------------------------------------------------------------------------

# Labels matched exactly (after lowercasing) against the provider's labels
NON_CONTENT_LABELS = frozenset({
    # Logos and branding
    "logo", "brand", "trademark", "emblem", "symbol", "icon", "badge", "seal",
    # Email signatures and footers
    "signature", "email signature", "footer", "watermark",
    # UI elements and buttons
    "button", "interface", "menu", "navigation", "toolbar", "widget",
    "cursor", "pointer", "arrow", "chevron", "hamburger",
    # Tracking and technical elements
    "tracking pixel", "pixel", "beacon", "tracker", "analytics", "measurement",
    "counter", "invisible", "transparent", "hidden", "spacer", "separator",
    # Social media
    "social media", "facebook icon", "twitter icon", "linkedin icon",
    "instagram icon", "youtube icon", "facebook", "twitter", "instagram",
    "linkedin", "youtube", "tiktok", "snapchat", "pinterest", "reddit",
    "whatsapp", "telegram", "discord", "social", "share", "follow", "like",
    "subscribe",
    # Stamps and marks
    "stamp", "insignia", "copyright", "brand mark",
    # Codes and patterns
    "qr code", "barcode", "code", "matrix", "pattern", "grid",
    "loading", "spinner", "progress",
    # Generic shapes
    "rectangle", "square", "circle", "triangle", "line", "dot", "shape",
    "geometric", "abstract pattern",
    # Generic non-content
    "clipart", "graphic design", "template", "placeholder",
})

# Terms matched as substrings, e.g. "facebook" in "facebook messenger"
SOCIAL_PLATFORM_TERMS = ("facebook", "twitter", "linkedin", "instagram", "youtube", "tiktok", "snapchat")
UI_TERMS = ("button", "icon", "menu", "navigation", "interface")
BRAND_TERMS = ("logo", "brand", "trademark", "symbol")
PARTIAL_MATCH_TERMS = SOCIAL_PLATFORM_TERMS + UI_TERMS + BRAND_TERMS

# Checked in order; the first category with a matching keyword wins
_CATEGORY_KEYWORDS = (
    ("logo/brand", ("logo", "brand", "trademark")),
    ("icon", ("icon", "symbol")),
    ("tracking pixel", ("pixel", "tracker", "beacon")),
    ("signature/footer", ("signature", "footer", "watermark")),
    ("UI element", ("button", "interface", "menu")),
)


def categorize_label(label_text: str) -> str:
    """Map a lowercased non-content label to a coarse category."""
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in label_text for keyword in keywords):
            return category
    return "non-content"


def is_partial_non_content_match(label_text: str, score: float, threshold: float) -> bool:
    return score >= threshold and any(term in label_text for term in PARTIAL_MATCH_TERMS)


def evaluate_analysis(analysis: VisionAnalysis, threshold: float) -> ClassificationVerdict:
    """Turn a provider response into a verdict. Pure: same input, same verdict."""
    if analysis.error:
        return ClassificationVerdict(keep=True, error=analysis.error)

    # A detected logo overrides every label-based check
    if analysis.logos:
        logo = analysis.logos[0]
        return ClassificationVerdict(
            keep=False,
            category="logo",
            description=logo.description,
            confidence=logo.score,
        )

    for label in analysis.labels:
        label_text = label.description.lower()
        if label_text in NON_CONTENT_LABELS and label.score >= threshold:
            return ClassificationVerdict(
                keep=False,
                category=categorize_label(label_text),
                description=label.description,
                confidence=label.score,
            )
        if is_partial_non_content_match(label_text, label.score, threshold):
            return ClassificationVerdict(
                keep=False,
                category="non-content",
                description=label.description,
                confidence=label.score,
            )

    return ClassificationVerdict(keep=True)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class ContentClassifier:
    """
    Keep-or-discard decisions for downloaded images.

    `vision` may be None: filtering then degrades to keep-everything.
    """

    def __init__(self, config: PipelineConfig, vision: Optional[VisionClassifier] = None):
        self.config = config
        self.vision = vision

    @property
    def enabled(self) -> bool:
        return self.config.enable_vision_filtering

    async def classify(self, file_path: str, filename: str, mime_type: str = "image/jpeg") -> ClassificationVerdict:
        if not self.enabled or self.vision is None:
            return ClassificationVerdict(keep=True, skipped=True)

        logger.info(f"Analyzing {filename} for non-content images...")

        if self.config.skip_tiny_images:
            tiny = self._check_tiny_file(file_path, filename)
            if tiny is not None:
                return tiny

        try:
            with open(file_path, "rb") as f:
                image_base64 = base64.b64encode(f.read()).decode("ascii")
        except OSError as e:
            logger.warning(f"Could not read {filename} for classification: {e}")
            return ClassificationVerdict(keep=True, error=f"Could not read image: {e}")

        if len(image_base64) > MAX_VISION_PAYLOAD_CHARS:
            logger.warning(f"Skipping vision analysis for {filename}: image too large for processing")
            return ClassificationVerdict(keep=True, error="Image too large for Vision API processing")

        analysis = await self._call_vision(image_base64, mime_type, filename)
        if isinstance(analysis, ClassificationVerdict):
            return analysis

        verdict = evaluate_analysis(analysis, self.config.confidence_threshold)
        if verdict.error:
            logger.warning(f"Vision API error for {filename}: {verdict.error}")
        elif not verdict.keep:
            confidence = f"{verdict.confidence * 100:.1f}%" if verdict.confidence is not None else "n/a"
            logger.info(
                f"Skipping {verdict.category}: {filename} "
                f"({verdict.description}, {confidence} confidence)"
            )
        return verdict

    def _check_tiny_file(self, file_path: str, filename: str) -> Optional[ClassificationVerdict]:
        try:
            size = os.path.getsize(file_path)
        except OSError as e:
            logger.warning(f"Could not check size of {filename}: {e}")
            return None

        if size < TINY_IMAGE_THRESHOLD_BYTES:
            logger.info(f"Skipping tiny file: {filename} ({size} bytes)")
            return ClassificationVerdict(
                keep=False,
                category="tiny image",
                description=f"Very small file ({size} bytes)",
                confidence=1.0,
            )
        return None

    async def _call_vision(
        self,
        image_base64: str,
        mime_type: str,
        filename: str,
    ) -> VisionAnalysis | ClassificationVerdict:
        """
        Single fail-open wrapper around the provider call.

        Returns the analysis, or a keep verdict carrying the failure.
        """
        try:
            return await asyncio.wait_for(
                self.vision.analyze(image_base64, mime_type),
                timeout=VISION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Vision API call timed out for {filename}")
            return ClassificationVerdict(keep=True, error="Vision API timeout")
        except Exception as e:
            logger.warning(f"Vision API call failed for {filename}: {e}")
            return ClassificationVerdict(keep=True, error=f"Vision API call failed: {e}")
