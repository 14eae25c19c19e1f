"""
Image processing router.

Host-facing entry point: a workflow step posts the message it received from
its Gmail trigger, and gets back the kept images and sender identity.

Environment variables
---------------------
INBOUND_WEBHOOK_SECRET   Shared secret checked in the X-Webhook-Secret header.
GMAIL_ACCESS_TOKEN       OAuth token used to fetch attachments (required).
DRIVE_ACCESS_TOKEN       OAuth token for Drive links (optional; links skipped without it).
VISION_PROVIDER and its credentials - see mailsift.services.vision.

Endpoints:
  POST /process      - run the pipeline over one message (auth: X-Webhook-Secret)
  GET  /config       - effective pipeline configuration (auth: X-Webhook-Secret)
"""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, ValidationError

from mailsift.config import STRENGTH_DESCRIPTIONS, FilteringStrength, PipelineConfig, load_config
from mailsift.models.email import EmailMessage
from mailsift.models.images import ProcessingResult
from mailsift.services.processor import ConfigurationError, ImageProcessingError, ImageProcessor
from mailsift.services.transports import DriveFileClient, GmailAttachmentClient
from mailsift.services.vision import vision_classifier_from_env

logger = logging.getLogger(__name__)

router = APIRouter()


class ConfigOverrides(BaseModel):
    """Per-request overrides of the environment configuration."""
    max_file_size_mb: Optional[int] = None
    enable_vision_filtering: Optional[bool] = None
    filtering_strength: Optional[FilteringStrength] = None
    skip_tiny_images: Optional[bool] = None


class ProcessRequest(BaseModel):
    email: Optional[EmailMessage] = None
    config: Optional[ConfigOverrides] = None


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """Raise 401 unless X-Webhook-Secret matches INBOUND_WEBHOOK_SECRET."""
    expected = os.getenv("INBOUND_WEBHOOK_SECRET", "")
    if not expected:
        logger.warning(
            "No webhook secret configured (INBOUND_WEBHOOK_SECRET); "
            "all image processing requests will be rejected"
        )
        raise HTTPException(status_code=401, detail="Webhook secret not configured")

    if not x_webhook_secret or x_webhook_secret != expected:
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------------------------------------------------------
# Collaborator wiring
# ---------------------------------------------------------------------------

def _build_config(overrides: Optional[ConfigOverrides]) -> PipelineConfig:
    try:
        return load_config(**(overrides.model_dump() if overrides else {}))
    except (ValidationError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid configuration: {e}")


def build_processor(config: PipelineConfig) -> ImageProcessor:
    """
    Build an ImageProcessor from environment credentials.

    Raises 503 when the attachment transport cannot be built; the file store
    and vision provider are optional.
    """
    gmail_token = os.getenv("GMAIL_ACCESS_TOKEN", "").strip()
    if not gmail_token:
        raise HTTPException(
            status_code=503,
            detail="Attachment transport unavailable: GMAIL_ACCESS_TOKEN is not configured",
        )

    drive_token = os.getenv("DRIVE_ACCESS_TOKEN", "").strip()
    file_store = DriveFileClient(drive_token) if drive_token else None

    vision = None
    if config.enable_vision_filtering:
        try:
            vision = vision_classifier_from_env()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    return ImageProcessor(
        config,
        attachments=GmailAttachmentClient(gmail_token),
        file_store=file_store,
        vision=vision,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/process", response_model=ProcessingResult)
async def process_email(
    request: ProcessRequest,
    _auth: None = Depends(_verify_webhook_secret),
) -> ProcessingResult:
    config = _build_config(request.config)
    processor = build_processor(config)

    try:
        return await processor.process(request.email)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ImageProcessingError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/config")
async def get_config(_auth: None = Depends(_verify_webhook_secret)) -> dict:
    config = _build_config(None)
    return {
        "max_file_size_mb": config.max_file_size_mb,
        "enable_vision_filtering": config.enable_vision_filtering,
        "filtering_strength": config.filtering_strength.value,
        "filtering_description": STRENGTH_DESCRIPTIONS[config.filtering_strength],
        "confidence_threshold": config.confidence_threshold,
        "skip_tiny_images": config.skip_tiny_images,
    }
