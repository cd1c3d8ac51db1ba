from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    storage_backend: str = "local"
    storage_dir: str = "./.data/blobs"
    database_url: str = "sqlite:///./.data/toolchat.db"

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    llm_timeout_seconds: float = 30.0
    default_model: str = "gpt-4o-mini"
    max_response_tokens: int = 1000

    classifier_model: str = "gpt-4o-mini"
    classifier_max_tokens: int = 50
    classifier_temperature: float = 0.1

    summary_model: str = "gpt-4o-mini"
    summary_max_tokens: int = 150
    summary_temperature: float = 0.3

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    transport_timeout_seconds: float = 30.0

    admin_password: Optional[str] = None

    redis_url: Optional[str] = None
    redis_socket_timeout_seconds: float = 0.5

    default_tool_id: str = "creative-writing"
    history_window: int = 10
    stored_history_limit: int = 20
    session_timeout_minutes: float = 30
    session_retention_days: int = 30
    sync_freshness_minutes: float = 10
    link_code_ttl_minutes: float = 10

    cors_allow_origins: str = "*"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def twilio_configured(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number)


settings = Settings()
