import logging
import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

logger = logging.getLogger(__name__)

# Environment variable prefix
ENV_PREFIX = "BRIDGE_"
EDITOR_ENV_PREFIX = f"{ENV_PREFIX}EDITOR_"

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class BridgeSettings(BaseSettings):
    """Control-process configuration loaded from environment variables."""

    # Logging Settings
    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    log_format: str = Field(default=DEFAULT_LOG_FORMAT, description="Logging format string")
    log_to_file: bool = Field(default=False, description="Enable logging to file with rotation")
    log_file_path: str = Field(default="logs/bridge.log", description="Path to the log file (directory will be created)")
    log_max_lines_per_file: int = Field(default=5000, description="Maximum lines per log file before rotation")
    log_max_files: int = Field(default=10, description="Maximum number of log files to keep")

    # Endpoint the editor connects to (also serves the HTTP query routes)
    host: str = Field(default="localhost", description="Interface the bridge server binds to")
    port: int = Field(default=8080, description="Port the bridge server listens on")

    # Bridge behaviour
    log_capacity: int = Field(default=1000, ge=1, description="Maximum number of editor log events kept in memory")
    command_timeout_seconds: float = Field(default=5.0, gt=0, description="How long to wait for a command result")
    diagnostic_tag: str = Field(default="[EditorBridge]", description="Prefix marking log lines captured for command results")
    reserved_asset_prefix: str = Field(default="Packages/", description="Asset paths under this prefix are hidden from snapshots")

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_prefix=ENV_PREFIX,
        extra='ignore',
        case_sensitive=False
    )


class EditorSettings(BaseSettings):
    """Editor-side connection configuration."""

    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    log_format: str = Field(default=DEFAULT_LOG_FORMAT, description="Logging format string")
    log_to_file: bool = Field(default=False, description="Enable logging to file with rotation")
    log_file_path: str = Field(default="logs/editor_bridge.log", description="Path to the log file (directory will be created)")
    log_max_lines_per_file: int = Field(default=5000, description="Maximum lines per log file before rotation")
    log_max_files: int = Field(default=10, description="Maximum number of log files to keep")

    server_url: str = Field(default="http://localhost:8080", description="URL of the control process bridge server")
    auth_token: Optional[str] = Field(default=None, description="Optional token passed in the Socket.IO auth payload")
    connect_timeout_seconds: float = Field(default=5.0, gt=0, description="Abandon a connection attempt after this long")
    reconnect_interval_seconds: float = Field(default=5.0, gt=0, description="Reconnect poll cadence while disconnected")
    snapshot_interval_seconds: float = Field(default=1.0, gt=0, description="Snapshot publication interval while connected")
    log_queue_size: int = Field(default=1000, ge=1, description="Maximum number of log records waiting to be forwarded")
    logging_enabled: bool = Field(default=True, description="Forward editor log records to the control process")
    diagnostic_tag: str = Field(default="[EditorBridge]", description="Prefix for log lines written by executed code")

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_prefix=EDITOR_ENV_PREFIX,
        extra='ignore',
        case_sensitive=False
    )


def _load_dotenv() -> None:
    logger.info(f"Current working directory: {os.getcwd()}")
    logger.info(f".env file exists: {os.path.exists('.env')}")
    try:
        from dotenv import load_dotenv
        env_loaded = load_dotenv('.env', override=False)
        logger.info(f"Manual .env loading result: {env_loaded}")
    except Exception as e:
        logger.warning(f"Failed to manually load .env file: {e}")


def load_settings() -> BridgeSettings:
    logger.info(f"Loading bridge configuration from .env file and environment variables (prefix: '{ENV_PREFIX}')...")
    _load_dotenv()

    bridge_vars = [k for k in os.environ if k.startswith(ENV_PREFIX) and not k.startswith(EDITOR_ENV_PREFIX)]
    logger.info(f"Found {len(bridge_vars)} {ENV_PREFIX} environment variables: {bridge_vars}")

    try:
        settings = BridgeSettings()
        logger.info(f"Bridge configuration loaded successfully (endpoint {settings.host}:{settings.port}, "
                    f"log capacity {settings.log_capacity}, command timeout {settings.command_timeout_seconds}s).")
        return settings
    except Exception as e:
        logger.exception(f"Critical error loading bridge configuration: {e}")
        raise ValueError(f"Failed to load configuration: {e}") from e


def load_editor_settings() -> EditorSettings:
    logger.info(f"Loading editor bridge configuration (prefix: '{EDITOR_ENV_PREFIX}')...")
    _load_dotenv()
    try:
        settings = EditorSettings()
        logger.info(f"Editor bridge configuration loaded successfully (server {settings.server_url}).")
        return settings
    except Exception as e:
        logger.exception(f"Critical error loading editor bridge configuration: {e}")
        raise ValueError(f"Failed to load configuration: {e}") from e
