"""Application settings assembled by pydantic-settings.

``get_app_config()`` builds a fresh ``AppConfig`` on every call; nothing is
cached, so an edited override file applies to the next request.

Sources, strongest first:

1. override YAML named by ``CHATRELAY_CONFIGMAP_FILE`` (a mounted ConfigMap)
2. ``CHATRELAY_*`` environment variables, ``__`` between nesting levels
3. ``.env`` in the project root
4. ``configs/config.yaml``
5. constructor arguments and field defaults
6. file secrets
"""

import os
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .system import (
    ChatConfig,
    LLMConfig,
    LoggingConfig,
    StreamConfig,
    ThirdPartyConfig,
    TracingConfig,
)

PROJECT_ROOT = Path(__file__).resolve().parents[3]
STATIC_CONFIG_FILE = PROJECT_ROOT / "configs" / "config.yaml"
DOTENV_FILE = PROJECT_ROOT / ".env"

ENV_PREFIX = "CHATRELAY_"
OVERRIDE_FILE_ENV = f"{ENV_PREFIX}CONFIGMAP_FILE"


def override_config_file() -> Optional[Path]:
    """Path of the override YAML, if one is configured and present."""
    raw = os.environ.get(OVERRIDE_FILE_ENV)
    if not raw:
        return None
    path = Path(raw)
    return path if path.is_file() else None


class AppConfig(BaseSettings):
    """Settings for the relay service, grouped by concern."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=DOTENV_FILE,
        env_file_encoding="utf-8",
        yaml_file=STATIC_CONFIG_FILE,
        yaml_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    third_party: ThirdPartyConfig = Field(
        default_factory=ThirdPartyConfig, description="Database connection"
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        static_yaml = YamlConfigSettingsSource(settings_cls)
        override = override_config_file()
        if override is None:
            head: tuple[PydanticBaseSettingsSource, ...] = ()
        else:
            head = (YamlConfigSettingsSource(settings_cls, yaml_file=override),)
        return (
            *head,
            env_settings,
            dotenv_settings,
            static_yaml,
            init_settings,
            file_secret_settings,
        )


def get_app_config() -> AppConfig:
    return AppConfig()


AppConfigDep = Annotated[AppConfig, Depends(get_app_config)]


def get_llm_config(config: AppConfigDep) -> LLMConfig:
    return config.llm


def get_chat_config(config: AppConfigDep) -> ChatConfig:
    return config.chat


def get_stream_config(config: AppConfigDep) -> StreamConfig:
    return config.stream
