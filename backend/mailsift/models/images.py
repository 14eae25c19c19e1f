"""
Pydantic models for detected, downloaded and classified images.

Models:
  AttachmentCandidate / DriveLinkCandidate  - the two kinds of detected image
  ImageCandidate                            - tagged union over both (field "type")
  DownloadedImage                           - bytes materialized to a temp file
  ExtractedImage                            - a kept image as returned to the caller
  VisionAnnotation / VisionAnalysis         - normalized classifier-service response
  ClassificationVerdict                     - keep/discard decision for one image
  ProcessingResult                          - final output of a run
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from mailsift.models.email import SenderIdentity


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

class AttachmentCandidate(BaseModel):
    """An image attached directly to the message."""
    model_config = ConfigDict(frozen=True)

    type: Literal["attachment"] = "attachment"
    filename: str
    mime_type: str
    size: int = 0
    attachment_id: str
    part_id: str        # dotted position in the part tree, e.g. "0.2.1"


class DriveLinkCandidate(BaseModel):
    """An image referenced by a file-store link in the message text."""
    model_config = ConfigDict(frozen=True)

    type: Literal["drive_link"] = "drive_link"
    filename: str
    mime_type: str
    size: int = 0
    file_id: str
    url: str


ImageCandidate = Annotated[
    Union[AttachmentCandidate, DriveLinkCandidate],
    Field(discriminator="type"),
]


class DriveFileMetadata(BaseModel):
    """Subset of file-store metadata used to qualify a link."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    name: Optional[str] = None
    mime_type: str = Field(default="", alias="mimeType")
    size: int = 0

    @field_validator("size", mode="before")
    @classmethod
    def _coerce_size(cls, value):
        # The Drive API reports size as a decimal string; folders omit it
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0


# ---------------------------------------------------------------------------
# Downloads and results
# ---------------------------------------------------------------------------

class DownloadedImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    size: int
    candidate: ImageCandidate


class ExtractedImage(BaseModel):
    """A kept image: the candidate's fields plus where its bytes now live."""
    type: Literal["attachment", "drive_link"]
    filename: str
    mime_type: str
    size: int = 0
    attachment_id: Optional[str] = None
    part_id: Optional[str] = None
    file_id: Optional[str] = None
    url: Optional[str] = None
    file_path: str
    extracted_at: datetime


class VisionAnnotation(BaseModel):
    description: str = ""
    score: float = 0.0


class VisionAnalysis(BaseModel):
    """Provider-agnostic response of the visual-classification service."""
    labels: list[VisionAnnotation] = []
    logos: list[VisionAnnotation] = []
    error: Optional[str] = None


class ClassificationVerdict(BaseModel):
    """
    Outcome of classifying one image.

    `keep` is False only when the image was positively identified as
    non-content; every failure path produces keep=True with `error` set.
    """
    model_config = ConfigDict(frozen=True)

    keep: bool
    category: Optional[str] = None      # "logo", "tiny image", "logo/brand", "icon", ...
    description: Optional[str] = None
    confidence: Optional[float] = None
    error: Optional[str] = None
    skipped: bool = False


class VisionFilteringSummary(BaseModel):
    enabled: bool
    strength: str
    skip_tiny_images: bool


class ProcessingResult(BaseModel):
    email_id: str
    subject: Optional[str] = None
    sender_info: SenderIdentity
    images: list[ExtractedImage] = []
    processed_at: Optional[datetime] = None
    total_images: Optional[int] = None
    skipped: bool = False
    reason: Optional[str] = None
    vision_filtering: Optional[VisionFilteringSummary] = None
