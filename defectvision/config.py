from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

class Settings(BaseSettings):
    # Database configuration. PostgreSQL when db_host is set, SQLite otherwise.
    db_host: str = ""
    db_port: int = 5432
    db_name: str = ""
    db_user: str = ""
    db_password: str = ""
    sqlite_path: str = "./defectvision.db"
    db_url: str = ""

    # Vision model gateway (OpenAI-compatible chat completions)
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    ai_api_key: str = ""
    ai_model: str = "google/gemini-2.5-flash"
    ai_timeout: Optional[float] = None  # None: wait for the upstream indefinitely
    max_image_bytes: int = 10 * 1024 * 1024

    # Bearer credential verification
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = "authenticated"

    # Dashboard behaviour
    history_limit: int = 100
    feed_poll_interval: float = 1.0
    batch_delay_seconds: float = 0.5
    max_notices: int = 20

    # Report limits
    report_max_inspections: int = 100
    report_max_defects: int = 50

    # Sample .env file
    # DEFECTVISION_DB_HOST=
    # DEFECTVISION_DB_PORT=
    # DEFECTVISION_DB_NAME=
    # DEFECTVISION_DB_USER=
    # DEFECTVISION_DB_PASSWORD=
    # DEFECTVISION_AI_API_KEY=
    # DEFECTVISION_JWT_SECRET=
    # DEFECTVISION_BATCH_DELAY_SECONDS=0.5

    @property
    def database_url(self) -> str:
        if self.db_url:
            return self.db_url
        if self.db_host:
            return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"
        return f"sqlite:///{self.sqlite_path}"

    # Other settings
    debug: bool = False
    log_level: str = "INFO"

    @model_validator(mode='after')
    def check_required_fields(self):
        if self.db_host and (not self.db_name or not self.db_user or not self.db_password):
            raise ValueError("db_host is set but db_name, db_user or db_password is missing; check the environment or .env file")
        if self.history_limit <= 0 or self.report_max_inspections <= 0 or self.report_max_defects <= 0:
            raise ValueError("history_limit and report limits must be positive")
        if self.batch_delay_seconds < 0 or self.feed_poll_interval <= 0:
            raise ValueError("batch_delay_seconds must be >= 0 and feed_poll_interval > 0")
        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEFECTVISION_",
        env_nested_delimiter="__",
        env_ignore_empty=True
    )

settings = Settings()
