from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Study and quiz rules
	quiz_question_count: int = Field(default=5, ge=1, le=20, validation_alias="QUIZ_QUESTION_COUNT")
	pass_mark_percent: int = Field(default=50, ge=0, le=100, validation_alias="PASS_MARK_PERCENT")
	failed_questions_limit: int = Field(default=50, ge=1, validation_alias="FAILED_QUESTIONS_LIMIT")
	review_mistakes_count: int = Field(default=5, ge=1, validation_alias="REVIEW_MISTAKES_COUNT")
	chat_retention_days: int = Field(default=7, ge=1, validation_alias="CHAT_RETENTION_DAYS")

	# Gemini: "ai_studio" (Generative Language API) or "vertex" (Vertex AI Express)
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	gemini_timeout_seconds: float = Field(default=60.0, gt=0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter is only used when Gemini fails and a key is set
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Oposiciones Tutor", validation_alias="OPENROUTER_TITLE")

	# Auth; 0 minutes means a 30-day token
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
