"""
Crop Issue Diagnosis Service

Sends a crop photo and the farmer's description to Gemini and returns the
identified disease/pest, a calibrated confidence and suggested treatments.
"""
import hashlib
import logging
from typing import Any, List

from pydantic import BaseModel, Field, field_validator

from agriassist.errors import InputError
from agriassist.services import llm

logger = logging.getLogger(__name__)

MAX_PHOTO_BYTES = 5 * 1024 * 1024
MIN_DESCRIPTION_CHARS = 10

DIAGNOSIS_PROMPT = """You are an expert in diagnosing crop diseases and pest infestations. A farmer will provide a photo and description of a crop issue, and you will provide a diagnosis, confidence level, and suggested treatments.

Description: {description}
Photo: (attached)

Respond in the following JSON format:
{{
  "diagnosis": {{
    "issueIdentified": "The identified disease or pest",
    "confidenceLevel": "The confidence level of the diagnosis (0-1)",
    "suggestedTreatments": ["Suggested treatment 1", "Suggested treatment 2"]
  }}
}}

Return only the JSON object."""


class DiagnoseCropIssueInput(BaseModel):
    photoDataUri: str = ""
    description: str = ""


class Diagnosis(BaseModel):
    issueIdentified: str
    confidenceLevel: float = Field(..., ge=0.0, le=1.0)
    suggestedTreatments: List[str] = Field(default_factory=list)

    @field_validator("confidenceLevel", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> float:
        # Models answer "0.8", "85", "85%" or 85 interchangeably
        if isinstance(v, bool) or not isinstance(v, (str, int, float)):
            raise ValueError(f"confidenceLevel must be a number, got {type(v).__name__}")
        if isinstance(v, str):
            v = v.strip().rstrip("%").strip()
        value = float(v)
        if value > 1.0:
            value = value / 100.0
        return max(0.0, min(1.0, value))

    @field_validator("suggestedTreatments", mode="before")
    @classmethod
    def _listify(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if not isinstance(v, (list, tuple)):
            raise ValueError(f"suggestedTreatments must be a list, got {type(v).__name__}")
        return [str(t) for t in v if str(t).strip()]


class DiagnoseCropIssueOutput(BaseModel):
    diagnosis: Diagnosis


def validate_diagnosis_input(req: DiagnoseCropIssueInput) -> tuple:
    """Check the description and photo; return `(mime_type, photo_bytes)`."""
    description = (req.description or "").strip()
    if len(description) < MIN_DESCRIPTION_CHARS:
        raise InputError("Please provide a detailed description (at least 10 characters).")
    if not req.photoDataUri:
        raise InputError("Please upload a photo of the crop.")
    try:
        mime_type, photo = llm.parse_data_uri(req.photoDataUri)
    except ValueError as e:
        raise InputError(f"Invalid photo: {e}")
    if not mime_type.startswith("image/"):
        raise InputError("The photo must be an image file.")
    if len(photo) > MAX_PHOTO_BYTES:
        raise InputError("Please upload an image smaller than 5MB.", status_code=413)
    return mime_type, photo


def diagnose_crop_issue(req: DiagnoseCropIssueInput) -> DiagnoseCropIssueOutput:
    mime_type, photo = validate_diagnosis_input(req)
    logger.info("diagnose_crop_issue: mime=%s bytes=%d sha256=%s",
                mime_type, len(photo), hashlib.sha256(photo).hexdigest()[:16])
    prompt = DIAGNOSIS_PROMPT.format(description=req.description.strip())
    return llm.generate_structured([prompt, llm.media_part(mime_type, photo)], DiagnoseCropIssueOutput)
