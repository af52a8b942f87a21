from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    line_channel_secret: str = ""
    line_channel_access_token: str = ""
    line_api_base: str = "https://api.line.me"
    openrouter_api_key: str = ""
    llm_model: str = "google/gemini-2.0-flash-exp"
    llm_min_confidence: float = 0.6
    db_path: str = "chat_ledger.json"
    environment: str = "development"
    log_level: str = "INFO"
    # Seconds to wait after persisting an expense before reading budgets back.
    budget_check_delay: float = 0.1

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
