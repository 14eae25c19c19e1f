"""
Extraction pipeline.

Downloads each detected candidate to a temp file, runs it through the
content classifier and keeps what survives. Candidates are handled one at a
time; a failure on one never stops the batch.
"""

import logging
import os
import re
import tempfile
import time
from datetime import datetime, timezone
from typing import Optional

from mailsift.config import BYTES_PER_MB, MAX_IMAGES_PER_MESSAGE, PipelineConfig
from mailsift.models.images import (
    AttachmentCandidate,
    DownloadedImage,
    DriveLinkCandidate,
    ExtractedImage,
    ImageCandidate,
)
from mailsift.services.classifier import ContentClassifier
from mailsift.services.transports import AttachmentTransport, FileStoreTransport, TransportError

logger = logging.getLogger(__name__)

_FILE_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")

_last_timestamp = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_file_size(size_bytes: int) -> str:
    """Human-readable size, e.g. 1536 -> "1.5 KB"."""
    if size_bytes <= 0:
        return "0 Bytes"
    i = 0
    while size_bytes >= 1024 ** (i + 1) and i < len(_FILE_SIZE_UNITS) - 1:
        i += 1
    size = round(size_bytes / 1024 ** i, 2)
    return f"{size:g} {_FILE_SIZE_UNITS[i]}"


def exceeds_max_size(size_bytes: int, max_size_mb: int = 25) -> bool:
    """True when size_bytes is strictly greater than max_size_mb megabytes."""
    return size_bytes > max_size_mb * BYTES_PER_MB


def _unique_timestamp() -> int:
    """Nanosecond timestamp, bumped so consecutive calls never repeat."""
    global _last_timestamp
    stamp = time.time_ns()
    if stamp <= _last_timestamp:
        stamp = _last_timestamp + 1
    _last_timestamp = stamp
    return stamp


def create_temp_file_path(filename: str, prefix: str = "", temp_dir: Optional[str] = None) -> str:
    """
    Build a unique temp path: <temp_dir>/<timestamp>_<prefix><sanitized filename>.

    Everything except letters, digits, "." and "-" in the filename becomes "_".
    """
    sanitized = re.sub(r"[^a-zA-Z0-9.-]", "_", filename)
    directory = temp_dir or tempfile.gettempdir()
    return os.path.join(directory, f"{_unique_timestamp()}_{prefix}{sanitized}")


def cleanup_temp_file(file_path: str) -> None:
    try:
        os.remove(file_path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp file {file_path}: {e}")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ExtractionPipeline:
    def __init__(
        self,
        config: PipelineConfig,
        attachments: AttachmentTransport,
        classifier: ContentClassifier,
        file_store: Optional[FileStoreTransport] = None,
    ):
        self.config = config
        self.attachments = attachments
        self.classifier = classifier
        self.file_store = file_store

    async def extract_all_images(
        self,
        candidates: list[ImageCandidate],
        message_id: str,
    ) -> list[ExtractedImage]:
        """Download, classify and keep candidates in order, at most 20 of them."""
        if len(candidates) > MAX_IMAGES_PER_MESSAGE:
            logger.warning(
                f"Too many images detected ({len(candidates)}). "
                f"Processing only the first {MAX_IMAGES_PER_MESSAGE} images."
            )
            candidates = candidates[:MAX_IMAGES_PER_MESSAGE]

        extracted: list[ExtractedImage] = []
        for candidate in candidates:
            image = await self.process_candidate(candidate, message_id)
            if image is not None:
                extracted.append(image)
        return extracted

    async def process_candidate(
        self,
        candidate: ImageCandidate,
        message_id: str,
    ) -> Optional[ExtractedImage]:
        logger.info(f"Processing: {candidate.filename}")

        if exceeds_max_size(candidate.size, self.config.max_file_size_mb):
            logger.warning(
                f"Skipping large file: {candidate.filename} ({format_file_size(candidate.size)})"
            )
            return None

        try:
            downloaded = await self.download(candidate, message_id)
        except Exception as e:
            logger.error(f"Failed to extract {candidate.filename}: {e}")
            return None

        # Declared sizes can be missing (0) or wrong; the bytes on disk decide
        if exceeds_max_size(downloaded.size, self.config.max_file_size_mb):
            logger.warning(
                f"Skipping large file: {candidate.filename} ({format_file_size(downloaded.size)})"
            )
            cleanup_temp_file(downloaded.file_path)
            return None

        try:
            verdict = await self.classifier.classify(
                downloaded.file_path, candidate.filename, candidate.mime_type
            )
        except Exception as e:
            # Classifier is fail-open; anything escaping it is a bug, not a verdict
            logger.error(f"Failed to classify {candidate.filename}: {e}")
            cleanup_temp_file(downloaded.file_path)
            return None

        if not verdict.keep:
            cleanup_temp_file(downloaded.file_path)
            return None

        return ExtractedImage(
            **candidate.model_dump(),
            file_path=downloaded.file_path,
            extracted_at=datetime.now(timezone.utc),
        )

    async def download(self, candidate: ImageCandidate, message_id: str) -> DownloadedImage:
        """Fetch the candidate's bytes into a fresh temp file."""
        if isinstance(candidate, AttachmentCandidate):
            content = await self.attachments.fetch(message_id, candidate.attachment_id)
            prefix = ""
        elif isinstance(candidate, DriveLinkCandidate):
            if self.file_store is None:
                raise TransportError("Google Drive not connected")
            content = await self.file_store.fetch_content(candidate.file_id)
            prefix = "drive_"
        else:
            raise TypeError(f"Unsupported candidate type: {type(candidate).__name__}")

        file_path = create_temp_file_path(candidate.filename, prefix, self.config.temp_dir)
        try:
            with open(file_path, "wb") as f:
                f.write(content)
        except OSError:
            cleanup_temp_file(file_path)
            raise
        return DownloadedImage(file_path=file_path, size=len(content), candidate=candidate)
