from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

	# Daily call budget shared by every request in the process
	daily_quota_limit: int = Field(default=1400, validation_alias="DAILY_QUOTA_LIMIT")
	disable_quota_check: bool = Field(default=False, validation_alias="DISABLE_QUOTA_CHECK")

	generation_max_retries: int = Field(default=3, validation_alias="GENERATION_MAX_RETRIES")
	generation_retry_delay_seconds: float = Field(default=5.0, validation_alias="GENERATION_RETRY_DELAY_SECONDS")
	# Upper bound for one generation request including all retries (0 = unbounded)
	generation_deadline_seconds: float = Field(default=300.0, validation_alias="GENERATION_DEADLINE_SECONDS")
	enable_validation: bool = Field(default=False, validation_alias="ENABLE_VALIDATION")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	frontend_url: str = Field(default="http://localhost:5173", validation_alias="FRONTEND_URL")

	# Per-client limit on /api/ requests; 0 disables
	rate_limit_max_requests: int = Field(default=100, validation_alias="RATE_LIMIT_MAX_REQUESTS")
	rate_limit_window_seconds: int = Field(default=900, validation_alias="RATE_LIMIT_WINDOW_SECONDS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
