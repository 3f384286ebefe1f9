"""AgriAssist backend: AI crop diagnosis, soil analysis, translation, weather and farm listings."""

__version__ = "0.3.0"
