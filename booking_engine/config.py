from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BOOKING_", env_file=".env", env_file_encoding="utf-8")

    log_level: str = "INFO"
    hold_window_minutes: int = 30
    no_show_grace_hours: int = 24
    sweep_enabled: bool = False
    sweep_interval_seconds: float = 60.0
    seed_default_policies: bool = True
