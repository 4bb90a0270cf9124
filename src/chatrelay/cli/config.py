"""Connection settings for the interactive client.

Read from ``CHATRELAY_CLI_*`` environment variables; command-line flags
override them.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CLIConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHATRELAY_CLI_", extra="ignore")

    host: str = "localhost"
    port: int = 8080
    api_path: str = "/api/chat"
    timeout: float = Field(
        default=300.0, description="Read timeout in seconds for one streamed answer"
    )

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}{self.api_path}"
