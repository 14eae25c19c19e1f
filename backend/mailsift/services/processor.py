"""
Image processor: one run over one message.

Resolves the sender, detects candidates, extracts and classifies them, and
aggregates the ProcessingResult. Only a missing message (ConfigurationError)
or an unexpected failure at this level reaches the caller; per-image
failures are absorbed by the extraction pipeline.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from mailsift.config import PipelineConfig
from mailsift.models.email import EmailMessage, SenderIdentity
from mailsift.models.images import ExtractedImage, ProcessingResult, VisionFilteringSummary
from mailsift.services.classifier import ContentClassifier
from mailsift.services.detector import detect_all_images
from mailsift.services.extractor import ExtractionPipeline
from mailsift.services.sender import resolve_sender
from mailsift.services.transports import AttachmentTransport, FileStoreTransport
from mailsift.services.vision import VisionClassifier

logger = logging.getLogger(__name__)

NO_SUBJECT = "No Subject"
NO_IMAGES_REASON = "No images found"


class ConfigurationError(Exception):
    """Raised when a run is missing required input."""


class ImageProcessingError(Exception):
    """Raised when a run fails outside per-image isolation."""


# ---------------------------------------------------------------------------
# Result aggregation
# ---------------------------------------------------------------------------

def build_no_images_result(email: EmailMessage, sender: SenderIdentity) -> ProcessingResult:
    return ProcessingResult(
        email_id=email.id,
        sender_info=sender,
        images=[],
        skipped=True,
        reason=NO_IMAGES_REASON,
    )


def build_success_result(
    email: EmailMessage,
    sender: SenderIdentity,
    images: list[ExtractedImage],
    config: PipelineConfig,
) -> ProcessingResult:
    result = ProcessingResult(
        email_id=email.id,
        subject=email.subject or NO_SUBJECT,
        sender_info=sender,
        images=images,
        processed_at=datetime.now(timezone.utc),
        total_images=len(images),
    )
    if config.enable_vision_filtering:
        result.vision_filtering = VisionFilteringSummary(
            enabled=True,
            strength=config.filtering_strength.value,
            skip_tiny_images=config.skip_tiny_images,
        )
    return result


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class ImageProcessor:
    """
    Wires the collaborators into a pipeline for one configuration.

    `file_store` and `vision` are optional; without them Drive links are
    not detected and classification keeps every image.
    """

    def __init__(
        self,
        config: PipelineConfig,
        attachments: AttachmentTransport,
        file_store: Optional[FileStoreTransport] = None,
        vision: Optional[VisionClassifier] = None,
    ):
        self.config = config
        self.file_store = file_store
        self.classifier = ContentClassifier(config, vision)
        self.pipeline = ExtractionPipeline(config, attachments, self.classifier, file_store)

    async def process(self, email: Optional[EmailMessage]) -> ProcessingResult:
        if email is None:
            raise ConfigurationError("No email data provided")

        logger.info(f'Processing email: "{email.subject or NO_SUBJECT}" from {email.from_ or "Unknown"}')

        try:
            sender = resolve_sender(email)
            logger.info(f"Sender: {sender.display_name} ({sender.email})")

            candidates = await detect_all_images(email, self.file_store)
            logger.info(f"Found {len(candidates)} images")
            if not candidates:
                logger.info("No images found in email")
                return build_no_images_result(email, sender)

            images = await self.pipeline.extract_all_images(candidates, email.id)
            logger.info(f"Successfully extracted {len(images)} images")
            self._log_filtering_stats(len(candidates), len(images))

            return build_success_result(email, sender, images, self.config)
        except Exception as e:
            logger.exception("Image processing failed")
            raise ImageProcessingError(f"Image processing failed: {e}") from e

    def _log_filtering_stats(self, detected: int, kept: int) -> None:
        filtered = detected - kept
        if self.config.enable_vision_filtering and filtered > 0:
            logger.info(f"Vision filtering results: {detected} detected -> {kept} kept ({filtered} filtered out)")
