"""
Pipeline configuration.

One canonical set of values owned by the image pipeline. The host supplies
the tunable fields (file size limit, filtering switches); everything else
is a fixed bound of the pipeline and lives here as a module constant so no
other module keeps its own copy.

Environment variables
---------------------
MAX_FILE_SIZE_MB            Per-file download limit in MB (default 25, 1-100).
ENABLE_VISION_FILTERING     "true" to classify downloaded images (default false).
VISION_FILTERING_STRENGTH   conservative | balanced | aggressive (default balanced).
SKIP_TINY_IMAGES            "false" to disable the tracking-pixel heuristic.
MAILSIFT_TEMP_DIR           Where downloaded images are written (default: system temp).
"""

import logging
import os
import tempfile
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fixed pipeline bounds
# ---------------------------------------------------------------------------

BYTES_PER_MB = 1024 * 1024

# Hard cap on candidates processed per message, independent of configuration
MAX_IMAGES_PER_MESSAGE = 20

# Files smaller than this are treated as tracking pixels
TINY_IMAGE_THRESHOLD_BYTES = 1024

# Link detection is skipped when the combined text of a message exceeds this
MAX_LINK_SCAN_CHARS = 1024 * 1024

# Base64 payloads above this are not sent to the vision service
MAX_VISION_PAYLOAD_CHARS = 10 * 1024 * 1024

VISION_TIMEOUT_SECONDS = 30
VISION_MAX_LOGO_RESULTS = 10
VISION_MAX_LABEL_RESULTS = 20

CONSERVATIVE_CONFIDENCE_THRESHOLD = 0.8
BALANCED_CONFIDENCE_THRESHOLD = 0.6
# Aggressive is derived from balanced rather than configured on its own
AGGRESSIVE_THRESHOLD_OFFSET = 0.2

SUPPORTED_IMAGE_MIME_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
    "image/svg+xml",
)

TEXT_MIME_TYPES = ("text/plain", "text/html")


class FilteringStrength(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


STRENGTH_DESCRIPTIONS = {
    FilteringStrength.CONSERVATIVE: "High confidence only - keeps more images",
    FilteringStrength.BALANCED: "Balanced filtering - recommended default",
    FilteringStrength.AGGRESSIVE: "Lower confidence threshold - filters more aggressively",
}


def confidence_threshold(strength: FilteringStrength) -> float:
    """Return the minimum label score that triggers a discard for a strength profile."""
    if strength == FilteringStrength.CONSERVATIVE:
        return CONSERVATIVE_CONFIDENCE_THRESHOLD
    if strength == FilteringStrength.AGGRESSIVE:
        return round(BALANCED_CONFIDENCE_THRESHOLD - AGGRESSIVE_THRESHOLD_OFFSET, 2)
    return BALANCED_CONFIDENCE_THRESHOLD


# ---------------------------------------------------------------------------
# Host-supplied configuration
# ---------------------------------------------------------------------------

class PipelineConfig(BaseModel):
    """Tunable settings for a single processing run."""
    max_file_size_mb: int = Field(default=25, ge=1, le=100)
    enable_vision_filtering: bool = False
    filtering_strength: FilteringStrength = FilteringStrength.BALANCED
    skip_tiny_images: bool = True
    temp_dir: str = Field(default_factory=tempfile.gettempdir)

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * BYTES_PER_MB

    @property
    def confidence_threshold(self) -> float:
        return confidence_threshold(self.filtering_strength)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_strength(raw: str | None) -> FilteringStrength:
    if not raw:
        return FilteringStrength.BALANCED
    try:
        return FilteringStrength(raw.strip().lower())
    except ValueError:
        logger.warning(
            f"Unknown filtering strength {raw!r}; falling back to "
            f"{FilteringStrength.BALANCED.value!r}"
        )
        return FilteringStrength.BALANCED


def load_config(**overrides) -> PipelineConfig:
    """
    Build a PipelineConfig from the environment.

    Keyword overrides (e.g. from a request body) win over environment values.
    Raises pydantic.ValidationError if a value is out of range.
    """
    values = {
        "max_file_size_mb": int(os.getenv("MAX_FILE_SIZE_MB", "25")),
        "enable_vision_filtering": _env_bool("ENABLE_VISION_FILTERING", False),
        "filtering_strength": _parse_strength(os.getenv("VISION_FILTERING_STRENGTH")),
        "skip_tiny_images": _env_bool("SKIP_TINY_IMAGES", True),
    }
    temp_dir = os.getenv("MAILSIFT_TEMP_DIR", "").strip()
    if temp_dir:
        values["temp_dir"] = temp_dir

    values.update({k: v for k, v in overrides.items() if v is not None})
    if isinstance(values.get("filtering_strength"), str):
        values["filtering_strength"] = _parse_strength(values["filtering_strength"])
    return PipelineConfig(**values)
