"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CompactionConfig(BaseModel):
    """History serialization tuning."""
    selection_decay_messages: int = Field(default=6, ge=0)  # Older selections become references
    chars_per_token: int = Field(default=4, ge=1)


class StorageConfig(BaseModel):
    """Conversation store configuration."""
    path: str = ""  # Directory for JSONL conversation files; empty disables persistence


class GatewayConfig(BaseModel):
    """Persistence HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 18791


class ClientConfig(BaseModel):
    """Persistence client configuration."""
    base_url: str = "http://127.0.0.1:18791"
    timeout: float = 10.0
    retries: int = Field(default=2, ge=0)


class Config(BaseSettings):
    """Root configuration for fragmentchat."""
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)

    model_config = SettingsConfigDict(
        env_prefix="FRAGMENTCHAT_",
        env_nested_delimiter="__",
    )

    @property
    def storage_path(self) -> Path | None:
        """Expanded storage directory, or None when persistence is unconfigured."""
        if not self.storage.path:
            return None
        return Path(self.storage.path).expanduser()
