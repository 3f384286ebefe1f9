"""
Soil Report Analysis Service

Three flows over a farmer's soil test report, all backed by Gemini:

- `analyze_soil_report`: PDF/TXT report -> summary, suitable crops and
  high-value crop options with preparation/fertilizer plans.
- `extract_soil_report_data`: report photo -> structured soil parameters (OCR).
- `chat_with_soil_context`: conversational crop advice grounded on extracted parameters.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from agriassist.errors import ConfigError, InputError, ModelOutputError, UpstreamError
from agriassist.services import llm

logger = logging.getLogger(__name__)

MAX_REPORT_BYTES = 10 * 1024 * 1024
ALLOWED_REPORT_TYPES = ("application/pdf", "text/plain")


class AnalyzeSoilReportInput(BaseModel):
    reportDataUri: str = ""
    additionalNotes: Optional[str] = None


class SuggestedCrop(BaseModel):
    cropName: str
    reasoning: str
    potentialYieldEstimate: Optional[str] = None
    requiredAmendments: Optional[List[str]] = None


class HighValueCropOption(BaseModel):
    cropName: str
    marketAnalysis: str
    soilPreparationPlan: str
    fertilizerRecommendations: str
    estimatedProfitabilityNotes: Optional[str] = None


class AnalyzeSoilReportOutput(BaseModel):
    soilAnalysisSummary: str
    suggestedCrops: List[SuggestedCrop] = Field(default_factory=list)
    highValueCropOptions: List[HighValueCropOption] = Field(default_factory=list)


ANALYSIS_PROMPT = """You are an expert agronomist AI specializing in soil health and crop recommendations.
The user has provided a soil test report and may include additional notes.
Your task is to analyze this information and provide comprehensive recommendations.

Soil Test Report Data:
{report}

User's Additional Notes:
{notes}

Based on the provided soil test report and any user notes, please provide the following:
1.  **Soil Analysis Summary**: Briefly summarize the key findings from the soil report. Focus on pH, macronutrients (N, P, K), and organic matter content if discernible from the report.
2.  **Suggested Crops**:
    *   Provide an exhaustive list of ALL crops that are well-suited to the *current* soil conditions with minimal amendments.
    *   For each crop, explain your reasoning, give an estimated potential yield and list any minimal soil amendments needed.
3.  **High-Value Crop Options**:
    *   Provide an exhaustive list of ALL high-value crops that could be profitably grown on this land *after* appropriate soil preparation and management.
    *   For each one include a brief market analysis, a detailed soil preparation plan, specific fertilizer recommendations (type, amount, timing) and notes on its estimated profitability.

Return ONLY one JSON object with this structure:
{{
  "soilAnalysisSummary": "string",
  "suggestedCrops": [
    {{"cropName": "string", "reasoning": "string", "potentialYieldEstimate": "string", "requiredAmendments": ["string"]}}
  ],
  "highValueCropOptions": [
    {{"cropName": "string", "marketAnalysis": "string", "soilPreparationPlan": "string", "fertilizerRecommendations": "string", "estimatedProfitabilityNotes": "string"}}
  ]
}}

If the soil report is unclear or lacks critical information for a specific field, state that the information was not available in the report for that field.
Be as comprehensive as possible when listing suggested crops and high-value crop options."""


def _report_parts(req: AnalyzeSoilReportInput) -> List[llm.Part]:
    if not req.reportDataUri or not req.reportDataUri.strip():
        raise InputError("Soil report file is required.")
    try:
        mime_type, data = llm.parse_data_uri(req.reportDataUri.strip())
    except ValueError as e:
        raise InputError(f"Invalid soil report file: {e}")
    if mime_type not in ALLOWED_REPORT_TYPES:
        raise InputError("Please upload a PDF or TXT file.")
    if len(data) > MAX_REPORT_BYTES:
        raise InputError("Please upload a file smaller than 10MB.", status_code=413)

    notes = (req.additionalNotes or "").strip() or "None provided."
    if mime_type == "text/plain":
        report_text = data.decode("utf-8", errors="replace")
        return [ANALYSIS_PROMPT.format(report=report_text, notes=notes)]
    return [ANALYSIS_PROMPT.format(report="(attached PDF document)", notes=notes), llm.media_part(mime_type, data)]


def analyze_soil_report(req: AnalyzeSoilReportInput) -> AnalyzeSoilReportOutput:
    parts = _report_parts(req)
    logger.info("analyze_soil_report: parts=%d notes=%s", len(parts), bool(req.additionalNotes))
    return llm.generate_structured(parts, AnalyzeSoilReportOutput)


EXTRACTION_PROMPT = """You are an expert agricultural scientist analyzing a soil analysis report.

Extract ALL numerical values and parameters from this soil test report image.

Return a JSON object with the following structure (use null for missing values):
{
  "lab_name": "Lab name if visible",
  "report_date": "Date if visible",
  "sample_id": "Sample ID if visible",
  "farmer_name": "Farmer name if visible",
  "village": "Village/location if visible",
  "parameters": {
    "ph": numeric value or null,
    "electrical_conductivity": numeric value in dS/m or null,
    "organic_carbon": numeric value in % or null,
    "nitrogen_n": numeric value in kg/ha or ppm or null,
    "phosphorus_p": numeric value in kg/ha or ppm or null,
    "potassium_k": numeric value in kg/ha or ppm or null,
    "sulphur_s": numeric value in kg/ha or ppm or null,
    "zinc_zn": numeric value in ppm or null,
    "iron_fe": numeric value in ppm or null,
    "copper_cu": numeric value in ppm or null,
    "manganese_mn": numeric value in ppm or null,
    "boron_b": numeric value in ppm or null
  },
  "soil_texture": "Sandy/Loamy/Clay/Silt if mentioned",
  "recommendations": "Any recommendations text from the report",
  "other_notes": "Any other relevant information"
}

Be thorough - extract every parameter you can find.
Return ONLY valid JSON, no other text."""


def extract_soil_report_data(image: bytes, mime_type: str = "image/jpeg") -> Dict[str, Any]:
    """Extract structured soil parameters from a soil analysis report image.

    Returns the parsed parameters with `extraction_success=True`, or
    `extraction_success=False` and an `error` when the model reply is not JSON.
    """
    if not image:
        raise InputError("Uploaded report image is empty.")
    if len(image) > MAX_REPORT_BYTES:
        raise InputError("Please upload a file smaller than 10MB.", status_code=413)
    text = llm.generate([EXTRACTION_PROMPT, llm.media_part(mime_type, image)], temperature=0.1, json_output=True)
    try:
        data = llm.extract_json_object(text)
    except ModelOutputError as e:
        logger.warning("Soil report extraction returned non-JSON output: %s", e)
        return {
            "extraction_success": False,
            "error": f"Failed to parse JSON from Gemini response: {e}",
            "raw_response": text[:500],
        }
    data.setdefault("parameters", {})
    data["extraction_success"] = True
    data["raw_response"] = text[:500]
    return data


def _format_param(params: Dict[str, Any], key: str, unit: str = "") -> str:
    value = params.get(key)
    if value is None:
        return "Not measured"
    return f"{value}{unit}"


def _build_soil_context(soil_data: Dict[str, Any], language_instruction: str) -> str:
    params = soil_data.get("parameters") or {}
    return f"""You are an expert agricultural advisor helping a farmer understand their soil and make crop decisions.

SOIL ANALYSIS DATA:
Laboratory: {soil_data.get('lab_name') or 'Not specified'}
Report Date: {soil_data.get('report_date') or 'Not specified'}
Location: {soil_data.get('village') or 'Not specified'}

SOIL PARAMETERS:
- pH: {_format_param(params, 'ph')}
- Electrical Conductivity: {_format_param(params, 'electrical_conductivity', ' dS/m')}
- Organic Carbon: {_format_param(params, 'organic_carbon', '%')}
- Nitrogen (N): {_format_param(params, 'nitrogen_n', ' kg/ha')}
- Phosphorus (P): {_format_param(params, 'phosphorus_p', ' kg/ha')}
- Potassium (K): {_format_param(params, 'potassium_k', ' kg/ha')}
- Sulphur (S): {_format_param(params, 'sulphur_s', ' kg/ha')}
- Zinc (Zn): {_format_param(params, 'zinc_zn', ' ppm')}
- Iron (Fe): {_format_param(params, 'iron_fe', ' ppm')}
- Copper (Cu): {_format_param(params, 'copper_cu', ' ppm')}
- Manganese (Mn): {_format_param(params, 'manganese_mn', ' ppm')}
- Boron (B): {_format_param(params, 'boron_b', ' ppm')}
- Soil Texture: {soil_data.get('soil_texture') or 'Not specified'}

Lab Recommendations: {soil_data.get('recommendations') or 'None provided'}

Your role:
1. Answer questions about crop suitability based on this soil data
2. Explain which crops will grow well and why
3. Suggest fertilizer corrections if needed
4. Be specific about NPK ratios and micronutrients
5. Consider pH, EC, and texture in your recommendations
6. {language_instruction}

Be conversational, friendly, and helpful. Keep responses concise but informative."""


def chat_with_soil_context(
    soil_data: Dict[str, Any],
    user_message: str,
    chat_history: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """Chat with the advisor about crop suitability for the given soil data.

    Args:
        soil_data: Extracted soil parameters (see `extract_soil_report_data`)
        user_message: The farmer's question
        chat_history: Previous turns, `[{"role": "user"|"assistant", "content": "..."}]`

    Returns:
        Dict with `response`, `updated_history` and `success`
    """
    if not (user_message or "").strip():
        raise InputError("message must not be empty")

    contains_devanagari = bool(re.search(r"[\u0900-\u097F]", user_message))
    language_instruction = (
        "Use both English and Hindi crop names when helpful."
        if contains_devanagari else "Respond in English only."
    )

    history = list(chat_history or [])
    messages = [_build_soil_context(soil_data or {}, language_instruction)]
    for msg in history:
        speaker = "Farmer" if msg.get("role", "user") == "user" else "Advisor"
        messages.append(f"{speaker}: {msg.get('content', '')}")
    messages.append(f"Farmer: {user_message}")
    full_prompt = "\n\n".join(messages) + "\n\nAdvisor:"

    try:
        reply = llm.generate([full_prompt], temperature=0.6).strip()
    except ConfigError:
        raise
    except (UpstreamError, ModelOutputError) as e:
        logger.error("Soil chat failed: %s", e)
        return {
            "response": f"Sorry, I encountered an error: {e}",
            "updated_history": history,
            "success": False,
            "error": str(e),
        }

    history.append({"role": "user", "content": user_message})
    history.append({"role": "assistant", "content": reply})
    return {"response": reply, "updated_history": history, "success": True}
