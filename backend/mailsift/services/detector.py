"""
Candidate detector.

Finds images in a message: attachments in the MIME part tree, then Google
Drive links in the message text. Attachments come first, each group in
traversal/match order.

Public API:
  detect_all_images(email, file_store)   -> list[ImageCandidate]
  find_image_attachments(payload)         -> list[AttachmentCandidate]
  extract_all_text_content(payload)       -> str
  find_drive_links(payload, file_store)   -> list[DriveLinkCandidate]
"""

import binascii
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from mailsift.config import MAX_LINK_SCAN_CHARS, SUPPORTED_IMAGE_MIME_TYPES, TEXT_MIME_TYPES
from mailsift.models.email import EmailMessage, MessagePart
from mailsift.models.images import AttachmentCandidate, DriveLinkCandidate, ImageCandidate
from mailsift.services.transports import FileStoreTransport, decode_base64url

logger = logging.getLogger(__name__)

# Compiled without re.MULTILINE etc; applied with finditer to catch every occurrence
DRIVE_PATTERNS = (
    re.compile(r"https://drive\.google\.com/file/d/([a-zA-Z0-9_-]+)"),
    re.compile(r"https://drive\.google\.com/open\?id=([a-zA-Z0-9_-]+)"),
    re.compile(r"https://drive\.google\.com/uc\?id=([a-zA-Z0-9_-]+)"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_image_mime_type(mime_type: str) -> bool:
    """Case-sensitive membership test against the supported image types."""
    return mime_type in SUPPORTED_IMAGE_MIME_TYPES


def generate_filename(mime_type: str) -> str:
    """Synthesize a name like image_2025-01-01T10-00-00-000Z.png for unnamed parts."""
    subtype = mime_type.split("/")[1] if "/" in mime_type else ""
    extension = subtype or "jpg"
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return f"image_{timestamp.replace(':', '-').replace('.', '-')}.{extension}"


def _is_image_attachment(part: MessagePart) -> bool:
    return bool(part.body.attachment_id) and is_image_mime_type(part.mime_type)


def _attachment_candidate(part: MessagePart, part_id: str) -> AttachmentCandidate:
    return AttachmentCandidate(
        filename=part.filename or generate_filename(part.mime_type),
        mime_type=part.mime_type,
        size=part.body.size or 0,
        attachment_id=part.body.attachment_id,
        part_id=part_id,
    )


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

def _walk_parts(parts: list[MessagePart], parent_id: str = "") -> tuple[AttachmentCandidate, ...]:
    found: tuple[AttachmentCandidate, ...] = ()
    for index, part in enumerate(parts):
        part_id = f"{parent_id}.{index}" if parent_id else str(index)
        if _is_image_attachment(part):
            found += (_attachment_candidate(part, part_id),)
        if part.parts:
            found += _walk_parts(part.parts, part_id)
    return found


def find_image_attachments(payload: MessagePart) -> list[AttachmentCandidate]:
    """
    Walk the part tree depth-first and return every image attachment.

    Part ids are positional ("0", "0.2", "0.2.1"). A single-part message
    whose top-level payload is itself an image attachment is addressed "0".
    """
    if payload.parts:
        return list(_walk_parts(payload.parts))
    if _is_image_attachment(payload):
        return [_attachment_candidate(payload, "0")]
    return []


# ---------------------------------------------------------------------------
# Text content and Drive links
# ---------------------------------------------------------------------------

def _part_texts(part: MessagePart) -> list[str]:
    texts = []
    if part.mime_type in TEXT_MIME_TYPES and part.body.data:
        try:
            texts.append(decode_base64url(part.body.data).decode("utf-8", errors="replace"))
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Could not decode {part.mime_type} part: {e}")
    for sub_part in part.parts:
        texts.extend(_part_texts(sub_part))
    return texts


def extract_all_text_content(payload: MessagePart) -> str:
    """Concatenate the decoded text/plain and text/html parts, newline-separated."""
    return "".join(f"{text}\n" for text in _part_texts(payload))


async def _drive_link_candidate(
    file_id: str,
    url: str,
    file_store: FileStoreTransport,
) -> Optional[DriveLinkCandidate]:
    try:
        metadata = await file_store.get_metadata(file_id)
    except Exception as e:
        logger.warning(f"Could not access Drive file {file_id}: {e}")
        return None

    if metadata is None:
        return None
    if not is_image_mime_type(metadata.mime_type):
        logger.info(f"Skipping Drive file {file_id}: not an image ({metadata.mime_type or 'unknown type'})")
        return None

    return DriveLinkCandidate(
        filename=metadata.name or f"drive-file-{file_id}",
        mime_type=metadata.mime_type,
        size=metadata.size,
        file_id=file_id,
        url=url,
    )


async def find_drive_links(
    payload: MessagePart,
    file_store: Optional[FileStoreTransport],
) -> list[DriveLinkCandidate]:
    """
    Find Drive links in the message text that resolve to image files.

    Returns an empty list when no file store is configured or the text is
    larger than the scan bound.
    """
    if file_store is None:
        logger.warning("Google Drive not connected - Drive links will be skipped")
        return []

    text_content = extract_all_text_content(payload)
    if len(text_content) > MAX_LINK_SCAN_CHARS:
        logger.warning(
            f"Skipping Drive link detection: text content too large "
            f"({len(text_content)} characters)"
        )
        return []

    links: list[DriveLinkCandidate] = []
    for pattern in DRIVE_PATTERNS:
        for match in pattern.finditer(text_content):
            file_id = match.group(1)
            if not file_id:
                continue
            candidate = await _drive_link_candidate(file_id, match.group(0), file_store)
            if candidate is not None:
                links.append(candidate)
    return links


async def detect_all_images(
    email: EmailMessage,
    file_store: Optional[FileStoreTransport] = None,
) -> list[ImageCandidate]:
    """Return attachments followed by Drive-link images for a message."""
    candidates: list[ImageCandidate] = list(find_image_attachments(email.payload))
    candidates.extend(await find_drive_links(email.payload, file_store))
    return candidates
