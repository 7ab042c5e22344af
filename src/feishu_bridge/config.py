"""Application configuration contract."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")

    feishu_app_id: str = Field(alias="FEISHU_APP_ID", default="")
    feishu_app_secret: str = Field(alias="FEISHU_APP_SECRET", default="")
    feishu_base_url: str = Field(alias="FEISHU_BASE_URL", default="https://open.feishu.cn")
    feishu_verification_token: str = Field(alias="FEISHU_VERIFICATION_TOKEN", default="")
    feishu_media_dir: str = Field(alias="FEISHU_MEDIA_DIR", default="~/.feishu_bridge/media")
    feishu_http_timeout_seconds: int = Field(alias="FEISHU_HTTP_TIMEOUT_SECONDS", default=20)
    feishu_allowed_chat_ids: str = Field(alias="FEISHU_ALLOWED_CHAT_IDS", default="")

    # Security: bind host defaults to loopback
    bind_host: str = Field(alias="BIND_HOST", default="127.0.0.1")
    bind_port: int = Field(alias="BIND_PORT", default=8000)

    @property
    def media_root(self) -> Path:
        return Path(self.feishu_media_dir).expanduser()

    @property
    def allowed_chat_ids(self) -> set[str]:
        raw = self.feishu_allowed_chat_ids.strip()
        return {item.strip() for item in raw.split(",") if item.strip()}


def validate_settings_for_env(settings: Settings) -> None:
    import logging as _logging
    import warnings

    _logger = _logging.getLogger(__name__)

    if settings.app_env == "prod" and settings.bind_host == "0.0.0.0":
        msg = (
            "SECURITY WARNING: BIND_HOST=0.0.0.0 in production. "
            "This exposes the webhook to all network interfaces. "
            "Set BIND_HOST=127.0.0.1 and use a reverse proxy."
        )
        _logger.warning(msg)
        warnings.warn(msg, stacklevel=2)

    if settings.feishu_http_timeout_seconds <= 0:
        raise ValueError("invalid configuration: FEISHU_HTTP_TIMEOUT_SECONDS must be positive")

    if settings.app_env != "prod":
        return

    missing: list[str] = []
    required_non_empty = {
        "FEISHU_APP_ID": settings.feishu_app_id,
        "FEISHU_APP_SECRET": settings.feishu_app_secret,
        "FEISHU_VERIFICATION_TOKEN": settings.feishu_verification_token,
        "FEISHU_MEDIA_DIR": settings.feishu_media_dir,
    }
    for key, value in required_non_empty.items():
        if not value.strip():
            missing.append(key)

    if settings.feishu_base_url and not settings.feishu_base_url.startswith("https://"):
        missing.append("FEISHU_BASE_URL(https required)")

    if missing:
        keys = ", ".join(sorted(set(missing)))
        raise ValueError(f"invalid production configuration: {keys}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
