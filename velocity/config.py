from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    PORT: int = 3000
    LOG_LEVEL: str = "info"

    ANCHOR_API_KEY: str | None = None
    ANCHOR_API_URL: str = "https://api.anchorbrowser.io/v1/tools/perform-web-task"
    SCRAPE_TIMEOUT_SECONDS: float = 300.0
    SCRAPE_MAX_RETRIES: int = 3
    SCRAPE_BASE_DELAY_SECONDS: float = 5.0

    XAI_API_KEY: str | None = None
    XAI_API_URL: str = "https://api.x.ai/v1/chat/completions"
    XAI_MODEL: str = "grok-beta"
    CLASSIFY_TIMEOUT_SECONDS: float = 30.0

    JOB_TTL_SECONDS: int = 3600
    JOB_SWEEP_INTERVAL_SECONDS: int = 600
    VELOCITY_WINDOWS_DAYS: list[int] = [30, 14]


settings = Settings()
