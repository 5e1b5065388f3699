"""Configuration management utilities."""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from roomrelay.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("configs/relay.yaml")


class RelaySection(BaseModel):
    """Room relay behaviour."""
    default_display_name: str = Field("Anonymous", description="Name used when a joiner sends none")
    outbound_queue_size: int = Field(256, ge=1, description="Pending outbound events per connection")
    max_message_bytes: int = Field(65536, ge=1024, description="Largest inbound frame accepted")


class HttpSection(BaseModel):
    """Plain HTTP surface served on the relay port."""
    health_path: str = Field("/ping", description="Liveness check path")
    health_body: str = Field("pong", description="Liveness check response body")
    websocket_path: str = Field("/ws", description="Path accepting WebSocket upgrades")
    static_dir: Path = Field(Path("public"), description="Client bundle directory")
    index_file: str = Field("index.html", description="File served for directory requests")


class TransportSection(BaseModel):
    """WebSocket keepalive settings."""
    ping_interval: Optional[float] = Field(20.0, description="Keepalive ping interval in seconds")
    ping_timeout: Optional[float] = Field(20.0, description="Keepalive pong timeout in seconds")
    close_timeout: float = Field(5.0, description="Closing handshake timeout in seconds")


class RelayConfig(BaseModel):
    """Main relay configuration."""
    relay: RelaySection = Field(default_factory=RelaySection)
    http: HttpSection = Field(default_factory=HttpSection)
    transport: TransportSection = Field(default_factory=TransportSection)


class Settings(BaseSettings):
    """Environment-based settings."""
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(3000, alias="PORT")

    config_path: Path = Field(DEFAULT_CONFIG_PATH, alias="RELAY_CONFIG")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(None, alias="LOG_FILE")

    class Config:
        env_file = ".env"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"  # Ignore extra environment variables not defined in schema


def load_config(config_path: Optional[Union[Path, str]] = None) -> RelayConfig:
    """Load relay configuration from a YAML file.

    Args:
        config_path: Path to configuration file. Defaults to the
            ``RELAY_CONFIG`` setting.

    Returns:
        Configuration object
    """
    if config_path is None:
        config_path = Settings().config_path
    config_path = Path(config_path)

    if not config_path.exists():
        logger.warning(f"Config file not found: {config_path}, using default config")
        return RelayConfig()

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f) or {}

    return RelayConfig(**config_dict)


def save_config(config: RelayConfig, output_path: Union[Path, str]) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration object
        output_path: Output file path
    """
    config_dict = config.model_dump(mode="json")

    with open(output_path, "w") as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)


# Global settings instance
settings = Settings()
