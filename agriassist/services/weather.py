import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import httpx

from agriassist.errors import ConfigError, InputError, UpstreamError

logger = logging.getLogger(__name__)

OWM_BASE = os.getenv("OPENWEATHERMAP_BASE", "https://api.openweathermap.org/data/2.5")
OPEN_METEO_BASE = os.getenv("OPEN_METEO_BASE", "https://api.open-meteo.com/v1/forecast")
MISSING_KEY_MESSAGE = "Weather API key is not configured on the server. Please check server logs."

COMPASS_POINTS = ["N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
                  "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW"]

# OpenWeatherMap icon prefix -> condition category used by the dashboard
ICON_CATEGORIES = {
    "03": "cloudy",
    "04": "overcast",
    "09": "drizzle",
    "10": "rain",
    "11": "thunderstorm",
    "13": "snow",
    "50": "fog",
}

HEAT_THRESHOLD_C = 40
FROST_THRESHOLD_C = 2
HIGH_WIND_M_S = 10.0
HEAVY_RAIN_MM = 20.0
WET_DAY_POP = 0.6


def get_weather_api_key() -> str:
    return os.getenv("OPENWEATHERMAP_API_KEY", "") or os.getenv("WEATHER_API_KEY", "")


def require_weather_api_key() -> str:
    api_key = get_weather_api_key()
    if not api_key:
        logger.error("OPENWEATHERMAP_API_KEY is not set in environment variables.")
        raise ConfigError(MISSING_KEY_MESSAGE)
    return api_key


def parse_coordinates(lat: Optional[str], lon: Optional[str]) -> Tuple[float, float]:
    if lat is None or lon is None or str(lat).strip() == "" or str(lon).strip() == "":
        raise InputError("Latitude and longitude are required")
    try:
        lat_f = float(lat)
        lon_f = float(lon)
    except (TypeError, ValueError):
        raise InputError(f"Invalid lat/lon values: lat={lat!r}, lon={lon!r}")
    if not (-90.0 <= lat_f <= 90.0) or not (-180.0 <= lon_f <= 180.0):
        raise InputError(f"Coordinates out of range: lat={lat_f}, lon={lon_f}")
    return lat_f, lon_f


def wind_direction(degrees: Any) -> str:
    """16-point compass name for a wind bearing in degrees ('' when unknown)."""
    if isinstance(degrees, bool) or not isinstance(degrees, (int, float)):
        return ""
    return COMPASS_POINTS[int(round(degrees / 22.5)) % 16]


def icon_category(icon_code: Optional[str]) -> str:
    if not icon_code:
        return "cloudy"
    prefix = icon_code[:2]
    night = icon_code.endswith("n")
    if prefix == "01":
        return "clear-night" if night else "clear-day"
    if prefix == "02":
        return "partly-cloudy-night" if night else "partly-cloudy-day"
    return ICON_CATEGORIES.get(prefix, "cloudy")


def _round(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(round(float(value)))


def shape_current_weather(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape an OpenWeatherMap /weather payload into the dashboard's WeatherData."""
    location_name = raw.get("name") or "Current Location"
    sys_info = raw.get("sys") or {}
    if sys_info.get("country"):
        location_name += f", {sys_info['country']}"

    main = raw.get("main") or {}
    wind = raw.get("wind") or {}
    conditions = raw.get("weather") or []
    first = conditions[0] if conditions else {}
    icon = first.get("icon") or "03d"
    wind_speed = wind.get("speed")

    current = {
        "dt": raw.get("dt"),
        "temp": _round(main.get("temp")),
        "condition": first.get("description") or "N/A",
        "icon": icon,
        "iconCategory": icon_category(icon),
        "humidity": main.get("humidity"),
        "windSpeed": _round(wind_speed * 3.6) if wind_speed is not None else None,
        "windDirection": wind_direction(wind.get("deg")),
        "feelsLike": _round(main.get("feels_like")),
    }
    # /weather carries no hourly or daily blocks
    return {"locationName": location_name, "current": current, "hourly": [], "daily": []}


def fetch_current_weather(lat: float, lon: float, client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    api_key = require_weather_api_key()
    params = {"lat": lat, "lon": lon, "appid": api_key, "units": "metric"}
    owns_client = client is None
    client = client or httpx.Client(timeout=20.0)
    try:
        resp = client.get(f"{OWM_BASE}/weather", params=params)
        if resp.status_code >= 400:
            try:
                error_data = resp.json()
            except ValueError:
                error_data = {}
            logger.error("OpenWeatherMap API error: status=%s body=%s", resp.status_code, error_data)
            message = (error_data.get("message") if isinstance(error_data, dict) else None) \
                or f"Failed to fetch weather data: {resp.reason_phrase}"
            raise UpstreamError(message, resp.status_code)
        raw = resp.json()
    except httpx.HTTPError as e:
        logger.exception("Error in weather API call")
        msg = str(e) or "Internal server error fetching weather data"
        raise UpstreamError(msg, 401 if "Invalid API key" in msg else 500)
    finally:
        if owns_client:
            client.close()
    return shape_current_weather(raw)


def fetch_forecast_open_meteo(lat: float, lon: float, days: int = 14,
                              client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    """Daily forecast from the public Open-Meteo API (no key), normalized to a OneCall-like dict."""
    days = max(1, min(16, int(days)))
    params = {
        "latitude": lat,
        "longitude": lon,
        "daily": "temperature_2m_max,temperature_2m_min,precipitation_sum,"
                 "precipitation_probability_max,windspeed_10m_max,weathercode",
        "windspeed_unit": "ms",
        "timezone": "auto",
        "forecast_days": days,
    }
    owns_client = client is None
    client = client or httpx.Client(timeout=20.0)
    try:
        resp = client.get(OPEN_METEO_BASE, params=params)
        resp.raise_for_status()
        raw = resp.json()
    except httpx.HTTPStatusError as e:
        logger.error("Open-Meteo returned %s", e.response.status_code)
        raise UpstreamError(f"Forecast provider error: {e.response.status_code}", 502)
    except httpx.HTTPError as e:
        logger.error("Open-Meteo request failed: %s", e)
        raise UpstreamError(f"Forecast provider unreachable: {e}", 502)
    finally:
        if owns_client:
            client.close()

    d = raw.get("daily") or {}
    times = d.get("time") or []

    def _at(key: str, i: int, default=None):
        values = d.get(key) or []
        if i < len(values) and values[i] is not None:
            return float(values[i])
        return default

    daily = []
    for i, day in enumerate(times):
        pop_pct = _at("precipitation_probability_max", i, 0.0)
        code = _at("weathercode", i)
        daily.append({
            "dt": day,
            "temp": {"min": _at("temperature_2m_min", i), "max": _at("temperature_2m_max", i)},
            "pop": round(pop_pct / 100.0, 2),
            "wind_speed": _at("windspeed_10m_max", i, 0.0),
            "rain": _at("precipitation_sum", i, 0.0),
            "thunderstorm": code is not None and code >= 95,
        })
    return {"source": "open-meteo", "daily": daily}


# advisory per day condition, in the order they are listed
DAY_ADVISORIES = (
    ("heat", "High daytime temperatures expected. Consider irrigation and heat stress measures."),
    ("frost", "Low night temperatures expected. Protect sensitive crops from frost."),
    ("wet", "High probability of heavy rain. Secure seedlings and improve drainage."),
    ("storm", "Thunderstorm risk. Avoid field operations and secure shade nets."),
)


def _day_conditions(d: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten one normalized forecast day and flag the conditions farmers act on."""
    temp = d.get("temp") or {}
    tmin = temp.get("min")
    tmax = temp.get("max")
    rain = float(d.get("rain") or 0.0)
    wind = float(d.get("wind_speed") or 0.0)
    pop = float(d.get("pop") or 0.0)
    return {
        "dt": d.get("dt"),
        "tmin": tmin,
        "tmax": tmax,
        "rain": rain,
        "wind": wind,
        "pop": pop,
        "heat": tmax is not None and tmax >= HEAT_THRESHOLD_C,
        "frost": tmin is not None and tmin <= FROST_THRESHOLD_C,
        "wet": pop > WET_DAY_POP,
        "storm": bool(d.get("thunderstorm")),
        "windy": wind >= HIGH_WIND_M_S,
        "downpour": rain >= HEAVY_RAIN_MM,
    }


def _conditions(forecast: Dict[str, Any], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    daily = forecast.get("daily") or []
    if limit is not None:
        daily = daily[:limit]
    return [_day_conditions(d) for d in daily]


def crop_advisories(forecast: Dict[str, Any], crop: Optional[str] = None) -> Dict[str, Any]:
    week = _conditions(forecast, limit=7)
    adv: List[str] = []
    for day in week:
        for flag, text in DAY_ADVISORIES:
            if day[flag] and text not in adv:
                adv.append(text)
    if crop:
        adv.append(f"General advice for {crop}: monitor pest/disease risk after heavy rains; "
                   "adjust nutrient schedule if stress observed.")
    return {"advisories": adv, "summary_days": len(week)}


def weather_alerts(forecast: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Severe-weather alerts derived from the daily forecast."""
    alerts = []
    for i, day in enumerate(_conditions(forecast)):
        if day["downpour"]:
            alerts.append({
                "id": f"rain-{i}",
                "title": "Potential Heavy Rainfall",
                "description": f"Forecast models indicate about {day['rain']:.0f} mm of rain. Monitor updates closely.",
                "severity": "warning",
                "date": day["dt"],
            })
        if day["heat"]:
            alerts.append({
                "id": f"heat-{i}",
                "title": "Heatwave",
                "description": f"Daytime temperature may reach {day['tmax']:.0f} °C.",
                "severity": "warning",
                "date": day["dt"],
            })
        if day["frost"]:
            alerts.append({
                "id": f"frost-{i}",
                "title": "Frost Risk",
                "description": f"Night temperature may drop to {day['tmin']:.0f} °C.",
                "severity": "info",
                "date": day["dt"],
            })
    return alerts


def irrigation_advice(rain_7d_mm: float, heat_days: int) -> str:
    if rain_7d_mm < 10 and heat_days > 0:
        return "Irrigate within next 48 hours; upcoming week looks dry and hot."
    if rain_7d_mm > 30:
        return "Delay irrigation; substantial rainfall expected in next 7 days."
    return "Monitor soil moisture; light rain expected."


def farmer_report(forecast: Dict[str, Any], crop: Optional[str] = None, horizon_days: int = 14) -> Dict[str, Any]:
    """Summarize the first `horizon_days` of a normalized daily forecast for a farmer.

    Rain totals cover the first 7 and 14 days of the horizon. Wind speeds are
    m/s per day and averaged in km/h. With no forecast days the irrigation
    recommendation is "no_data".
    """
    days = _conditions(forecast, limit=horizon_days)
    heat_days = sum(d["heat"] for d in days)
    rain_7d = round(sum(d["rain"] for d in days[:7]), 2)

    report: Dict[str, Any] = {
        "horizon_days": horizon_days,
        "rain_7d_mm": rain_7d,
        "rain_14d_mm": round(sum(d["rain"] for d in days[:14]), 2),
        "heat_days": heat_days,
        "frost_days": sum(d["frost"] for d in days),
        "avg_wind_kmh": round(sum(d["wind"] for d in days) / len(days) * 3.6, 2) if days else 0.0,
        "high_wind_days": sum(d["windy"] for d in days),
        "daily": [
            {
                "dt": d["dt"],
                "temp_min": d["tmin"],
                "temp_max": d["tmax"],
                "pop": round(d["pop"], 2),
                "wind_speed_m_s": round(d["wind"], 2),
                "rain_mm": round(d["rain"], 2),
            }
            for d in days
        ],
        "irrigation_recommendation": irrigation_advice(rain_7d, heat_days) if days else "no_data",
    }
    if crop and days:
        report["crop_note"] = f"For {crop}: monitor pests after heavy rain; adjust fertiliser if prolonged wet period."
    return report


def forecast_report(lat: float, lon: float, crop: Optional[str] = None, days: int = 14,
                    client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    forecast = fetch_forecast_open_meteo(lat, lon, days=days, client=client)
    report = farmer_report(forecast, crop=crop, horizon_days=days)
    report["advisories"] = crop_advisories(forecast, crop=crop)["advisories"]
    report["alerts"] = weather_alerts(forecast)
    report["source"] = forecast.get("source")
    return report
