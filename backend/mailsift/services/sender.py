"""
Sender resolver.

Turns the message's "from" data into a SenderIdentity. Prefers the
pre-parsed header object a Gmail trigger supplies; otherwise parses the raw
header string. Never raises: anything unusable resolves to "Unknown Sender".
"""

import logging
import re
from typing import Optional

from mailsift.models.email import EmailMessage, ParsedAddress, SenderIdentity

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FOLDER_NAME_MAX_LENGTH = 50
FOLDER_NAME_FALLBACK = "Unknown Sender"
UNKNOWN_SENDER_EMAIL = "unknown@example.com"

_INVALID_FOLDER_CHARS = re.compile(r'[<>:"/\\|?*@]')
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_ANGLE_EMAIL = re.compile(r"<([^>]*)>")
_NAME_BEFORE_ANGLE = re.compile(r"^([^<]+)<")


def sanitize_folder_name(name: str) -> str:
    """
    Make a display name safe to use as a folder name.

    Invalid characters become "_", runs of "_" collapse, leading/trailing
    "_" and whitespace are trimmed and the result is cut to 50 characters.
    Falls back to "Unknown Sender" when nothing is left.
    """
    cleaned = _INVALID_FOLDER_CHARS.sub("_", name or "")
    cleaned = _REPEATED_UNDERSCORES.sub("_", cleaned)
    cleaned = cleaned.strip("_").strip()
    cleaned = cleaned[:FOLDER_NAME_MAX_LENGTH]
    return cleaned or FOLDER_NAME_FALLBACK


def unknown_sender(raw_from: Optional[str] = None) -> SenderIdentity:
    return SenderIdentity(
        email=UNKNOWN_SENDER_EMAIL,
        name=FOLDER_NAME_FALLBACK,
        display_name=FOLDER_NAME_FALLBACK,
        folder_name=FOLDER_NAME_FALLBACK,
        raw_from=raw_from or "Unknown",
    )


def _local_part(email: str) -> str:
    return email.split("@")[0]


def _from_parsed(parsed: ParsedAddress, raw_from: Optional[str]) -> SenderIdentity:
    name = parsed.name or _local_part(parsed.email) or "Unknown"
    return SenderIdentity(
        email=parsed.email,
        name=name,
        display_name=name,
        folder_name=sanitize_folder_name(name),
        raw_from=raw_from or f"{parsed.name or 'Unknown'} <{parsed.email}>",
    )


def parse_from_header(from_header: Optional[str]) -> SenderIdentity:
    """
    Parse a raw From header such as '"Jane Doe" <jane@example.com>'.

    Without angle brackets the whole string is taken as a bare address.
    """
    if not from_header or not from_header.strip():
        logger.warning("No From header provided; using unknown sender")
        return unknown_sender(from_header)

    try:
        name = ""
        email_match = _ANGLE_EMAIL.search(from_header)
        if email_match:
            email = email_match.group(1).strip()
            if not email:
                logger.warning(f"Empty address in From header {from_header!r}; using unknown sender")
                return unknown_sender(from_header)
            name_match = _NAME_BEFORE_ANGLE.match(from_header)
            if name_match:
                name = name_match.group(1).strip().replace('"', "")
        else:
            email = from_header.strip()

        if not name:
            name = _local_part(email) or "Unknown"
        return SenderIdentity(
            email=email,
            name=name,
            display_name=name,
            folder_name=sanitize_folder_name(name),
            raw_from=from_header,
        )
    except Exception as e:
        logger.warning(f"Failed to parse From header {from_header!r}: {e}")
        return unknown_sender(from_header)


def resolve_sender(email: EmailMessage) -> SenderIdentity:
    """Resolve the sender of a message. Total: never raises."""
    try:
        parsed = email.parsed_headers.from_ if email.parsed_headers else None
        if parsed is not None and parsed.email:
            logger.info(f"Using pre-parsed sender data: {parsed.name or 'Unknown'} <{parsed.email}>")
            return _from_parsed(parsed, email.from_)
        logger.warning("Pre-parsed sender data not available, falling back to header parsing")
    except Exception as e:
        logger.warning(f"Failed to read pre-parsed sender data: {e}")
    return parse_from_header(email.from_)
