"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local/mock fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Auth ─────────────────────────────────────────────────────────
    use_auth0: bool = Field(default=True, alias="FF_USE_AUTH0")
    # ON  → Bearer JWT required. Auth0 JWKS when AUTH0_DOMAIN is set,
    #       otherwise HS256 with JWT_SECRET.
    # OFF → Dev user injected (user_id="dev-user"). No token needed.

    # ── Storage ──────────────────────────────────────────────────────
    use_s3: bool = Field(default=True, alias="FF_USE_S3")
    # ON  → Images go to AWS S3. Needs AWS creds + S3_BUCKET_NAME.
    # OFF → Images saved to LOCAL_STORAGE_PATH/assets/, served at /api/chat/assets/.

    # ── Cache / Realtime ─────────────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → Redis pub/sub for realtime frontend notifications. Needs REDIS_URL.
    # OFF → Notifications silently skipped. Nothing breaks.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="gemini", alias="FF_LLM_PROVIDER")
    # "gemini" → Gemini OpenAI-compatible endpoint (default). Needs GEMINI_API_KEY.
    # "openai" → Direct OpenAI. Needs OPENAI_API_KEY.

    # ── Agent ────────────────────────────────────────────────────────
    expose_thinking: bool = Field(default=True, alias="FF_EXPOSE_THINKING")
    # ON  → Model reasoning requested and streamed as `thinking` events.
    # OFF → Reasoning neither requested nor streamed.

    use_web_scraper: bool = Field(default=True, alias="FF_USE_WEB_SCRAPER")
    # ON  → web_scraper tool registered.
    # OFF → Tool not registered. Model relies on uploaded images only.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
