from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BATCHGPT_",
        extra="ignore",
    )

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"

    # Model defaults
    model: str = "gpt-3.5-turbo"
    image_model: str | None = None
    image_size: str = "1024x1024"
    temperature: float = 1.0

    # Resilience
    timeout_seconds: float | None = 300.0  # None disables the per-attempt timeout
    retry_count: int = 0
    retry_delay_seconds: float = 0.0
    concurrency: int = 1

    # Response quality floors
    min_tokens: int | None = None
    min_response_ms: int | None = None
    validate_json: bool = False

    # Moderation
    moderation: bool = False
    moderation_threshold: float = 0.5

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Metrics
    metrics_enabled: bool = True


settings = Settings()
