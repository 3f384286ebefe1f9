"""AI text translation for farmer-facing content."""
import logging

from pydantic import BaseModel

from agriassist.errors import InputError
from agriassist.services import llm

logger = logging.getLogger(__name__)

DEFAULT_TARGET_LANGUAGE = "Spanish"

TARGET_LANGUAGES = [
    "Spanish",
    "French",
    "German",
    "Hindi",
    "Japanese",
    "Chinese (Simplified)",
    "Portuguese",
    "Russian",
    "Arabic",
    "Italian",
    "Korean",
]

TRANSLATE_PROMPT = """Translate the following text into {target_language}:

Text to translate:
{text}

Ensure the translation is accurate and natural-sounding in the target language.
Return ONLY a JSON object of the form {{"translatedText": "..."}}."""


class TranslateTextInput(BaseModel):
    textToTranslate: str = ""
    targetLanguage: str = ""


class TranslateTextOutput(BaseModel):
    translatedText: str


def translate_text(req: TranslateTextInput) -> TranslateTextOutput:
    text = (req.textToTranslate or "").strip()
    target = (req.targetLanguage or "").strip()
    if not text:
        raise InputError("Text to translate cannot be empty.")
    if not target:
        raise InputError("Target language must be selected.")
    logger.info("translate_text: target=%s chars=%d", target, len(text))
    prompt = TRANSLATE_PROMPT.format(target_language=target, text=req.textToTranslate)
    return llm.generate_structured([prompt], TranslateTextOutput, temperature=0.2)
