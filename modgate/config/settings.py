"""Runtime settings."""

from __future__ import annotations

import os

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


DEFAULT_CONFIG_FILE = "config.yaml"


def config_file_path() -> str:
    """YAML config path: MODGATE_CONFIG_FILE or ./config.yaml."""
    return os.environ.get("MODGATE_CONFIG_FILE", "").strip() or DEFAULT_CONFIG_FILE


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MODGATE_", extra="ignore", frozen=True)

    app_name: str = "ModGate"
    log_level: str = "info"
    log_dir: str = "logs"
    host: str = "0.0.0.0"
    port: int = Field(default=8080, gt=0)

    openai_api_key: str = ""
    moderation_api_url: str = "https://api.openai.com/v1/moderations"
    moderation_timeout_seconds: float = Field(default=180.0, gt=0)
    # 短文本走 omni 模型，超过该字符数改用通用 text 模型
    moderation_short_max_chars: int = Field(default=4096, ge=0)
    moderation_short_model: str = "omni-moderation-latest"
    moderation_long_model: str = "text-moderation-latest"
    moderation_chunk_chars: int = Field(default=48000, gt=0)

    target_url: str = "https://api.openai.com/v1/chat/completions"
    upstream_timeout_seconds: float = Field(default=180.0, gt=0)
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20

    warning_msg: str = "Your request was rejected by content moderation."
    # 达到多少字符才审核，不足则直接放行
    min_chars_moderate: int = Field(default=0, ge=0)
    # True: 审核全部 user/system 消息；False: 只审核最后一条 user 消息
    full_context_moderate: bool = False
    # 白名单模型绕过审核
    white_list_models: list[str] = Field(default_factory=list)
    default_model: str = "gpt-4o-mini"

    # 按全文长度替换 model：(mid, fast] -> mid_tier_model，> fast -> fast_tier_model
    mid_tier_min_chars: int = Field(default=10 * 1024, ge=0)
    fast_tier_min_chars: int = Field(default=100 * 1024, ge=0)
    mid_tier_model: str = "glm-4-air"
    fast_tier_model: str = "glm-4-flash"

    flag_log_path: str = "log.txt"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_settings = YamlConfigSettingsSource(
            settings_cls,
            yaml_file=config_file_path(),
            yaml_file_encoding="utf-8",
        )
        return init_settings, env_settings, yaml_settings, file_secret_settings


settings = Settings()
