from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timezone: str = "UTC"
    sqlite_path: str = "data/habits.db"
    log_path: str = "logs/habitcache.log"
    log_level: str = "INFO"
    reconcile_window_weeks: int = 6
    exdate_tolerance_sec: float = 1.0
    adherence_days: int = 30


settings = Settings()
