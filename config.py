"""
config.py

Centralized configuration management using pydantic-settings.
All modules must import settings from this file.
Direct os.getenv() calls are prohibited elsewhere.
"""

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class Thresholds(BaseModel):
    """Glucose band boundaries in mg/dL."""

    bg_high: int = 260
    bg_target_top: int = 180
    bg_target_bottom: int = 80
    bg_low: int = 55


class Settings(BaseSettings):
    """Client-wide settings loaded from .env file."""

    # Server
    server_url: str = "http://127.0.0.1:1337"
    api_secret: str = ""
    token: str = ""
    history_hours: int = 48

    # Display
    units: str = "mg/dl"  # "mg/dl" | "mmol"
    time_format: int = 12
    theme: str = "colors"  # "default" | "colors" | any other themed palette
    custom_title: str = "Nightscout"
    focus_hours: int = 3
    show_forecast: str = "ar2"
    show_rawbg: str = "never"  # "never" | "always" | "noise"
    night_mode: bool = False

    # Glucose thresholds (mg/dL)
    bg_high: int = 260
    bg_target_top: int = 180
    bg_target_bottom: int = 80
    bg_low: int = 55

    # Alarm toggles
    alarm_high: bool = True
    alarm_low: bool = True
    alarm_urgent_high: bool = True
    alarm_urgent_low: bool = True
    alarm_timeago_warn: bool = True
    alarm_timeago_urgent: bool = True

    # Staleness thresholds (minutes since last reading)
    alarm_timeago_warn_mins: int = 15
    alarm_timeago_urgent_mins: int = 30

    # Snooze options offered per alarm class (minutes)
    alarm_urgent_mins: list[int] = [30, 60, 90, 120]
    alarm_warn_mins: list[int] = [30, 60, 90, 120]
    alarm_timeago_urgent_snooze_mins: list[int] = [15, 30, 45, 60]
    alarm_timeago_warn_snooze_mins: list[int] = [15, 30, 45, 60]

    # Audio
    mute: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(
            bg_high=self.bg_high,
            bg_target_top=self.bg_target_top,
            bg_target_bottom=self.bg_target_bottom,
            bg_low=self.bg_low,
        )


settings = Settings()
