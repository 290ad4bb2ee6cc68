from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ORIGINS: list[str] = [
	"https://illustrious-hummingbird-0af3bb.netlify.app",
	"http://localhost:3000",
]


class Settings(BaseSettings):
	# OpenAI-compatible vendor (chat, speech synthesis, transcription)
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
	chat_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_CHAT_MODEL")
	chat_temperature: float = Field(default=0.7, validation_alias="OPENAI_CHAT_TEMPERATURE")
	system_prompt: str = Field(default="You are an OPIC examiner.", validation_alias="ASK_SYSTEM_PROMPT")
	tts_model: str = Field(default="tts-1", validation_alias="OPENAI_TTS_MODEL")
	tts_default_voice: str = Field(default="shimmer", validation_alias="TTS_DEFAULT_VOICE")
	tts_fallback_voice: str = Field(default="alloy", validation_alias="TTS_FALLBACK_VOICE")
	stt_model: str = Field(default="whisper-1", validation_alias="OPENAI_STT_MODEL")
	stt_language: str | None = Field(default="en", validation_alias="STT_LANGUAGE")

	# D-ID talking avatar
	did_api_key: str | None = Field(default=None, validation_alias="D_ID_API_KEY")
	did_base_url: str = Field(default="https://api.d-id.com", validation_alias="D_ID_BASE_URL")
	# Optional Microsoft voice id passed through as the talk script provider
	did_voice_id: str | None = Field(default=None, validation_alias="D_ID_VOICE_ID")
	default_image_url: str | None = Field(default=None, validation_alias="DEFAULT_AVATAR_IMAGE_URL")
	poll_max_attempts: int = Field(default=24, validation_alias="SPEAK_POLL_MAX_ATTEMPTS")
	poll_interval_seconds: float = Field(default=1.25, validation_alias="SPEAK_POLL_INTERVAL_SECONDS")

	# HTTP front door
	allowed_origins: str = Field(default="", validation_alias="ALLOWED_ORIGINS")
	port: int = Field(default=8080, validation_alias="PORT")
	max_body_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_BODY_BYTES")
	max_upload_bytes: int = Field(default=25 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")
	vendor_timeout_seconds: float = Field(default=60.0, validation_alias="VENDOR_TIMEOUT_SECONDS")

	# Synthesized audio cache
	tts_cache_limit: int = Field(default=100, validation_alias="TTS_CACHE_LIMIT")
	tts_cache_ttl_seconds: float = Field(default=3600.0, validation_alias="TTS_CACHE_TTL_SECONDS")

	warmup_on_startup: bool = Field(default=True, validation_alias="WARMUP_ON_STARTUP")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config; populate_by_name lets tests pass field names
	model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

	def origins(self) -> list[str]:
		raw = (self.allowed_origins or "").strip()
		if not raw:
			return list(DEFAULT_ORIGINS)
		return [s.strip() for s in raw.split(",") if s.strip()]


settings = Settings()
