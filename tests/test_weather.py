import httpx
import pytest

from agriassist import main
from agriassist.services import weather

OWM_PAYLOAD = {
    "dt": 1760860800,
    "name": "Nashik",
    "sys": {"country": "IN"},
    "main": {"temp": 28.6, "feels_like": 30.4, "humidity": 62},
    "wind": {"speed": 4.2, "deg": 250},
    "weather": [{"description": "scattered clouds", "icon": "03d"}],
}


def _owm_client(status=200, payload=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status, json=payload if payload is not None else OWM_PAYLOAD)
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def owm_key(monkeypatch):
    monkeypatch.setenv("OPENWEATHERMAP_API_KEY", "test-owm-key")


@pytest.mark.parametrize("deg,expected", [
    (0, "N"), (11, "N"), (12, "NNE"), (90, "E"), (250, "WSW"), (348.75, "N"), (359, "N"),
])
def test_wind_direction(deg, expected):
    assert weather.wind_direction(deg) == expected


def test_wind_direction_unknown():
    assert weather.wind_direction(None) == ""


@pytest.mark.parametrize("code,expected", [
    ("01d", "clear-day"), ("01n", "clear-night"), ("02n", "partly-cloudy-night"),
    ("04d", "overcast"), ("09d", "drizzle"), ("11n", "thunderstorm"), ("50d", "fog"),
    ("", "cloudy"), ("99x", "cloudy"),
])
def test_icon_category(code, expected):
    assert weather.icon_category(code) == expected


def test_shape_current_weather():
    data = weather.shape_current_weather(OWM_PAYLOAD)
    assert data["locationName"] == "Nashik, IN"
    assert data["hourly"] == [] and data["daily"] == []
    assert data["current"] == {
        "dt": 1760860800,
        "temp": 29,
        "condition": "scattered clouds",
        "icon": "03d",
        "iconCategory": "cloudy",
        "humidity": 62,
        "windSpeed": 15,
        "windDirection": "WSW",
        "feelsLike": 30,
    }


def test_shape_defaults_for_sparse_payload():
    data = weather.shape_current_weather({"dt": 1, "main": {"temp": 10}, "wind": {}, "weather": []})
    assert data["locationName"] == "Current Location"
    assert data["current"]["condition"] == "N/A"
    assert data["current"]["icon"] == "03d"
    assert data["current"]["windDirection"] == ""


def test_fetch_current_weather_query(owm_key):
    seen = []
    data = weather.fetch_current_weather(19.99, 73.79, client=_owm_client(seen=seen))
    assert data["current"]["temp"] == 29
    params = seen[0].url.params
    assert seen[0].url.path.endswith("/weather")
    assert params["units"] == "metric"
    assert params["appid"] == "test-owm-key"
    assert params["lat"] == "19.99"


def test_weather_route(client, owm_key, monkeypatch):
    monkeypatch.setattr(main, "fetch_current_weather",
                        lambda lat, lon: weather.fetch_current_weather(lat, lon, client=_owm_client()))
    resp = client.get("/api/weather", params={"lat": "19.99", "lon": "73.79"})
    assert resp.status_code == 200
    assert resp.json()["locationName"] == "Nashik, IN"


def test_weather_route_missing_key(client, monkeypatch):
    monkeypatch.delenv("OPENWEATHERMAP_API_KEY", raising=False)
    monkeypatch.delenv("WEATHER_API_KEY", raising=False)
    resp = client.get("/api/weather", params={"lat": "1", "lon": "2"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == weather.MISSING_KEY_MESSAGE


@pytest.mark.parametrize("params", [{}, {"lat": "19.9"}, {"lon": "73.7"}])
def test_weather_route_requires_coordinates(client, owm_key, params):
    resp = client.get("/api/weather", params=params)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Latitude and longitude are required"


def test_weather_route_rejects_bad_coordinates(client, owm_key):
    assert client.get("/api/weather", params={"lat": "north", "lon": "1"}).status_code == 400
    assert client.get("/api/weather", params={"lat": "95", "lon": "1"}).status_code == 400


def test_weather_upstream_error_passthrough(client, owm_key, monkeypatch):
    failing = _owm_client(status=401, payload={"cod": 401, "message": "Invalid API key. Please see https://openweathermap.org/faq#error401 for more info."})
    monkeypatch.setattr(main, "fetch_current_weather",
                        lambda lat, lon: weather.fetch_current_weather(lat, lon, client=failing))
    resp = client.get("/api/weather", params={"lat": "1", "lon": "2"})
    assert resp.status_code == 401
    assert resp.json()["detail"].startswith("Invalid API key")


def test_weather_upstream_error_without_message(owm_key):
    with pytest.raises(weather.UpstreamError) as exc:
        weather.fetch_current_weather(1, 2, client=_owm_client(status=503, payload={}))
    assert exc.value.status_code == 503
    assert str(exc.value) == "Failed to fetch weather data: Service Unavailable"


def test_weather_transport_failure(owm_key):
    def handler(request):
        raise httpx.ConnectError("connection refused")
    broken = httpx.Client(transport=httpx.MockTransport(handler))
    with pytest.raises(weather.UpstreamError) as exc:
        weather.fetch_current_weather(1, 2, client=broken)
    assert exc.value.status_code == 500


def _day(dt, tmin, tmax, rain=0.0, wind=3.0, pop=0.1, thunderstorm=False):
    return {"dt": dt, "temp": {"min": tmin, "max": tmax}, "rain": rain, "wind_speed": wind,
            "pop": pop, "thunderstorm": thunderstorm}


def test_farmer_report_hot_and_dry():
    forecast = {"daily": [_day(f"2026-10-{20 + i}", 24, 41 if i == 2 else 35) for i in range(7)]}
    report = weather.farmer_report(forecast, crop="Cotton", horizon_days=7)
    assert report["heat_days"] == 1
    assert report["rain_7d_mm"] == 0.0
    assert report["avg_wind_kmh"] == 10.8
    assert report["irrigation_recommendation"].startswith("Irrigate within next 48 hours")
    assert "Cotton" in report["crop_note"]
    assert len(report["daily"]) == 7


def test_farmer_report_wet_week():
    forecast = {"daily": [_day("d%d" % i, 18, 26, rain=6.0, wind=11.0) for i in range(10)]}
    report = weather.farmer_report(forecast, horizon_days=14)
    assert report["rain_7d_mm"] == 42.0
    assert report["rain_14d_mm"] == 60.0
    assert report["high_wind_days"] == 10
    assert report["irrigation_recommendation"].startswith("Delay irrigation")


def test_farmer_report_empty_forecast():
    report = weather.farmer_report({"daily": []})
    assert report["irrigation_recommendation"] == "no_data"


def test_advisories_and_alerts():
    forecast = {"daily": [
        _day("2026-10-20", 1, 20),
        _day("2026-10-21", 10, 22, rain=35.0, pop=0.9, thunderstorm=True),
        _day("2026-10-22", 10, 22, rain=25.0, pop=0.8),
    ]}
    adv = weather.crop_advisories(forecast, crop="Wheat")["advisories"]
    assert sum(a.startswith("High probability of heavy rain") for a in adv) == 1
    assert any("frost" in a for a in adv)
    assert any("Thunderstorm" in a for a in adv)
    assert adv[-1].startswith("General advice for Wheat")

    alerts = weather.weather_alerts(forecast)
    titles = [a["title"] for a in alerts]
    assert titles.count("Potential Heavy Rainfall") == 2
    assert "Frost Risk" in titles
    assert alerts[1]["date"] == "2026-10-21"


OPEN_METEO_PAYLOAD = {
    "daily": {
        "time": ["2026-10-20", "2026-10-21"],
        "temperature_2m_max": [31.0, 42.5],
        "temperature_2m_min": [20.0, 27.0],
        "precipitation_sum": [22.4, None],
        "precipitation_probability_max": [80, 5],
        "windspeed_10m_max": [5.5, 12.0],
        "weathercode": [95, 1],
    }
}


def test_open_meteo_normalization():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=OPEN_METEO_PAYLOAD)

    forecast = weather.fetch_forecast_open_meteo(20.0, 73.0, days=30,
                                                 client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert seen[0].url.params["forecast_days"] == "16"
    first, second = forecast["daily"]
    assert first["pop"] == 0.8 and first["thunderstorm"] is True and first["rain"] == 22.4
    assert second["rain"] == 0.0 and second["temp"]["max"] == 42.5


def test_forecast_route(client, monkeypatch):
    mock = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=OPEN_METEO_PAYLOAD)))
    monkeypatch.setattr(main, "forecast_report",
                        lambda lat, lon, crop=None, days=14: weather.forecast_report(lat, lon, crop, days, client=mock))
    resp = client.get("/api/weather/forecast", params={"lat": "20", "lon": "73", "crop": "Onion", "days": 2})
    assert resp.status_code == 200
    body = resp.json()
    assert body["source"] == "open-meteo"
    assert body["heat_days"] == 1
    assert {a["title"] for a in body["alerts"]} == {"Potential Heavy Rainfall", "Heatwave"}
    assert body["advisories"][-1].startswith("General advice for Onion")


def test_forecast_provider_down(client, monkeypatch):
    mock = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500, json={})))
    monkeypatch.setattr(main, "forecast_report",
                        lambda lat, lon, crop=None, days=14: weather.forecast_report(lat, lon, crop, days, client=mock))
    assert client.get("/api/weather/forecast", params={"lat": "20", "lon": "73"}).status_code == 502


@pytest.mark.parametrize("rain_7d,heat_days,prefix", [
    (4.0, 2, "Irrigate within next 48 hours"),
    (45.0, 2, "Delay irrigation"),
    (15.0, 0, "Monitor soil moisture"),
])
def test_irrigation_advice(rain_7d, heat_days, prefix):
    assert weather.irrigation_advice(rain_7d, heat_days).startswith(prefix)
