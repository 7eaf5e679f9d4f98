"""
monitor/services/preferences.py

Key-value store for the two persisted user preferences:
focusHours and showForecast.
"""

from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)

FOCUS_HOURS_KEY: str = "focusHours"
SHOW_FORECAST_KEY: str = "showForecast"


class PreferenceStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class InMemoryPreferenceStore:
    """Session-scoped preference store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        logger.info("preference_saved", key=key, value=value)


def toggle_forecast(show_forecast: str, forecast_type: str, checked: bool) -> str:
    """Add or remove one forecast type from the space-separated list."""
    types = [t for t in show_forecast.split(" ") if t]
    if checked:
        if forecast_type not in types:
            types.append(forecast_type)
    else:
        types = [t for t in types if t != forecast_type]
    return " ".join(types)
