import logging
import os
import datetime
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from agriassist import __version__
from agriassist import auth as auth_module
from agriassist.errors import ConfigError, InputError, ModelOutputError, UpstreamError
from agriassist.services import directory
from agriassist.services.diagnosis import DiagnoseCropIssueInput, DiagnoseCropIssueOutput, diagnose_crop_issue
from agriassist.services.soil_report import (
    AnalyzeSoilReportInput,
    AnalyzeSoilReportOutput,
    MAX_REPORT_BYTES,
    analyze_soil_report,
    chat_with_soil_context,
    extract_soil_report_data,
)
from agriassist.services.translate import (
    DEFAULT_TARGET_LANGUAGE,
    TARGET_LANGUAGES,
    TranslateTextInput,
    TranslateTextOutput,
    translate_text,
)
from agriassist.services.weather import (
    fetch_current_weather,
    forecast_report,
    parse_coordinates,
    require_weather_api_key,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="AgriAssist API", version=__version__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _service_error(e: Exception) -> HTTPException:
    """Map a service-layer exception onto the HTTP status the dashboard expects."""
    if isinstance(e, InputError):
        return HTTPException(status_code=e.status_code, detail=str(e))
    if isinstance(e, ConfigError):
        return HTTPException(status_code=500, detail=str(e))
    if isinstance(e, UpstreamError):
        return HTTPException(status_code=e.status_code or 502, detail=str(e))
    if isinstance(e, ModelOutputError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _require_user(authorization: Optional[str]) -> Dict[str, Any]:
    user = auth_module.user_from_authorization(authorization)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


@app.on_event("startup")
def _init_storage():
    auth_module.init_db()


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# AI flows
# ---------------------------------------------------------------------------

@app.post("/api/diagnosis", response_model=DiagnoseCropIssueOutput)
def diagnosis(req: DiagnoseCropIssueInput, authorization: Optional[str] = Header(None)):
    try:
        result = diagnose_crop_issue(req)
    except ValueError as e:
        logger.error("Diagnosis failed: %s", e)
        raise _service_error(e)
    except Exception as e:
        logger.exception("diagnosis handler error")
        raise HTTPException(status_code=500, detail=str(e))

    user = auth_module.user_from_authorization(authorization)
    if user:
        try:
            auth_module.save_diagnosis(user["id"], result.model_dump(), description=req.description.strip())
        except Exception as e:
            logger.warning("Failed to save diagnosis history: %s", e)
    return result


@app.get("/api/diagnosis/history")
def diagnosis_history(limit: int = Query(50, ge=1, le=500), authorization: Optional[str] = Header(None)):
    user = _require_user(authorization)
    return {"items": auth_module.list_diagnosis(user["id"], limit=limit)}


@app.post("/api/soil-analysis", response_model=AnalyzeSoilReportOutput)
def soil_analysis(req: AnalyzeSoilReportInput):
    try:
        return analyze_soil_report(req)
    except ValueError as e:
        logger.error("Soil report analysis failed: %s", e)
        raise _service_error(e)
    except Exception as e:
        logger.exception("soil_analysis handler error")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/soil-report/extract")
async def soil_report_extract(file: UploadFile = File(...)):
    """Extract structured data from a soil analysis report image (OCR via Gemini)."""
    # one byte past the cap is enough to reject an oversized upload
    contents = await file.read(MAX_REPORT_BYTES + 1)
    mime_type = file.content_type or "image/jpeg"
    if not mime_type.startswith("image/") and mime_type != "application/pdf":
        raise HTTPException(status_code=400, detail="Upload an image or PDF of the soil report")
    try:
        return extract_soil_report_data(contents, mime_type=mime_type)
    except ValueError as e:
        logger.error("Soil report extraction failed: %s", e)
        raise _service_error(e)


class SoilChatRequest(BaseModel):
    soil_data: Dict[str, Any]
    message: str
    chat_history: Optional[List[Dict[str, str]]] = []


@app.post("/api/soil-report/chat")
def soil_report_chat(req: SoilChatRequest):
    """Chat with the advisor about crop suitability based on soil report data."""
    try:
        return chat_with_soil_context(
            soil_data=req.soil_data,
            user_message=req.message,
            chat_history=req.chat_history,
        )
    except ValueError as e:
        logger.error("Soil chat failed: %s", e)
        raise _service_error(e)


@app.post("/api/translate", response_model=TranslateTextOutput)
def translate(req: TranslateTextInput):
    try:
        return translate_text(req)
    except ValueError as e:
        logger.error("Translation failed: %s", e)
        raise _service_error(e)
    except Exception as e:
        logger.exception("translate handler error")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/translate/languages")
def translate_languages():
    return {"languages": TARGET_LANGUAGES, "default": DEFAULT_TARGET_LANGUAGE}


# ---------------------------------------------------------------------------
# Weather
# ---------------------------------------------------------------------------

@app.get("/api/weather")
def weather(lat: Optional[str] = None, lon: Optional[str] = None):
    try:
        # key check comes first so a misconfigured server says so even for bad input
        require_weather_api_key()
        lat_f, lon_f = parse_coordinates(lat, lon)
        return fetch_current_weather(lat_f, lon_f)
    except ValueError as e:
        raise _service_error(e)
    except Exception as e:
        logger.exception("Error in weather API route")
        raise HTTPException(status_code=500, detail=str(e) or "Internal server error fetching weather data")


@app.get("/api/weather/forecast")
def weather_forecast(
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    crop: Optional[str] = None,
    days: int = Query(14, ge=1, le=16),
):
    try:
        lat_f, lon_f = parse_coordinates(lat, lon)
        return forecast_report(lat_f, lon_f, crop=crop, days=days)
    except ValueError as e:
        raise _service_error(e)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

@app.get("/api/crop-prices")
def crop_prices(search: Optional[str] = None, category: Optional[str] = None, market: Optional[str] = None):
    return directory.list_crop_prices(search=search, category=category, market=market)


@app.get("/api/crop-prices/filters")
def crop_price_filters():
    return directory.crop_price_filters()


@app.get("/api/equipment")
def equipment(search: Optional[str] = None, type: Optional[str] = None):
    return directory.list_equipment(search=search, type=type)


@app.get("/api/equipment/types")
def equipment_types():
    return {"types": directory.facet_values(directory.EQUIPMENT, "type")}


class BookingRequest(BaseModel):
    date: Optional[datetime.date] = None


@app.post("/api/equipment/{equipment_id}/book")
def book_equipment(equipment_id: str, req: Optional[BookingRequest] = None):
    try:
        booking = directory.book_equipment(equipment_id, req.date if req else None)
    except InputError as e:
        raise _service_error(e)
    if booking is None:
        raise HTTPException(status_code=404, detail=f"Equipment {equipment_id} not found")
    return booking


@app.get("/api/resources")
def resources(search: Optional[str] = None, category: Optional[str] = None):
    return directory.list_resources(search=search, category=category)


@app.get("/api/resources/categories")
def resource_categories():
    return {"categories": directory.facet_values(directory.RESOURCES, "category")}


@app.get("/api/nutrient-guide")
def nutrient_guide(search: Optional[str] = None, type: Optional[str] = None):
    return directory.list_nutrient_guide(search=search, type=type)


@app.get("/api/nutrient-guide/types")
def nutrient_guide_types():
    return {"types": directory.facet_values(directory.NUTRIENT_GUIDE, "type")}


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: str
    password: str
    confirmPassword: str
    displayName: Optional[str] = None
    role: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


@app.post("/api/auth/register")
def register(req: RegisterRequest):
    try:
        fields = auth_module.validate_registration(
            req.email, req.password, req.confirmPassword, req.displayName, req.role
        )
        user = auth_module.create_user(fields["email"], req.password, fields["display_name"], fields["role"])
    except InputError as e:
        raise _service_error(e)
    return {"user": user, "access_token": auth_module.create_access_token(user), "token_type": "bearer"}


@app.post("/api/auth/login")
def login(req: LoginRequest):
    user = auth_module.authenticate_user(req.email, req.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    return {"user": user, "access_token": auth_module.create_access_token(user), "token_type": "bearer"}


@app.get("/api/auth/me")
def me(authorization: Optional[str] = Header(None)):
    return _require_user(authorization)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
