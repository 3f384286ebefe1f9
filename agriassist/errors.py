"""Error types raised by the service layer and mapped to HTTP status codes in `main`."""
from typing import Optional


class ConfigError(ValueError):
    """A required server setting (usually an API key) is missing."""


class UpstreamError(ValueError):
    """An external provider (Gemini, OpenWeatherMap, Open-Meteo) failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ModelOutputError(ValueError):
    """The AI model answered, but not with usable structured output."""


class InputError(ValueError):
    """User-supplied input was rejected before any provider call (400, or 413 when too large)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code
