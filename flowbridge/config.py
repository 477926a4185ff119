"""Configuration management for the workflow bridge."""

import os
from typing import Optional, Dict, Any, List
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .core.exceptions import ConfigurationError

ENV_PREFIX = "FLOWBRIDGE_"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="FlowBridge", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    reload: bool = Field(default=False, description="Enable auto-reload in development")

    # Execution settings
    max_node_workers: int = Field(
        default=4,
        description="Worker pool size for the nodes of one execution wave"
    )
    node_executor: Optional[str] = Field(
        default=None,
        description="Import path 'module:attribute' of the node executor"
    )

    # MCP settings
    mcp_protocol_version: str = Field(default="2024-11-05", description="MCP protocol version served")
    mcp_server_version: str = Field(default="1.0.0", description="Version reported in serverInfo")
    tool_per_trigger: bool = Field(
        default=False,
        description="Expose one tool per trigger node instead of one per workflow"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    # Performance monitoring settings
    slow_request_threshold: float = Field(
        default=5.0,
        description="Slow request threshold in seconds"
    )
    enable_performance_monitoring: bool = Field(
        default=True,
        description="Enable performance monitoring middleware"
    )

    # Security settings
    cors_origins: list = Field(
        default=["*"],
        description="CORS allowed origins"
    )
    cors_methods: list = Field(
        default=["GET", "POST", "PUT", "DELETE"],
        description="CORS allowed methods"
    )

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        """Validate port number."""
        if not 1 <= v <= 65535:
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator('max_node_workers')
    @classmethod
    def validate_max_node_workers(cls, v):
        """Validate node worker pool size."""
        if v < 1:
            raise ValueError("Node worker pool size must be at least 1")
        return v

    @field_validator('node_executor')
    @classmethod
    def validate_node_executor(cls, v):
        """Validate the executor import path shape."""
        if v is None or v == "":
            return None
        module_name, _, attribute = v.partition(":")
        if not module_name or not attribute:
            raise ValueError("Node executor must look like 'module:attribute'")
        return v

    @field_validator('slow_request_threshold')
    @classmethod
    def validate_slow_request_threshold(cls, v):
        if v <= 0:
            raise ValueError("Slow request threshold must be positive")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.reload

    def get_uvicorn_config(self) -> Dict[str, Any]:
        """Get Uvicorn server configuration."""
        return {
            "host": self.host,
            "port": self.port,
            "reload": self.reload,
            "log_level": self.log_level.lower(),
            "access_log": self.debug
        }

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from FLOWBRIDGE_* environment variables."""
        def get_env(key: str, default=None, type_func=str):
            """Get environment variable with type conversion."""
            value = os.getenv(f"{ENV_PREFIX}{key}")
            if value is None:
                return default
            if type_func == bool:
                return str(value).lower() in ('true', '1', 'yes', 'on')
            elif type_func == list:
                return [item.strip() for item in value.split(',') if item.strip()] if value else default
            return type_func(value)

        try:
            return cls(
                app_name=get_env("APP_NAME", "FlowBridge"),
                app_version=get_env("APP_VERSION", "1.0.0"),
                debug=get_env("DEBUG", False, bool),
                host=get_env("HOST", "0.0.0.0"),
                port=get_env("PORT", 8000, int),
                reload=get_env("RELOAD", False, bool),
                max_node_workers=get_env("MAX_NODE_WORKERS", 4, int),
                node_executor=get_env("NODE_EXECUTOR", None),
                mcp_protocol_version=get_env("MCP_PROTOCOL_VERSION", "2024-11-05"),
                mcp_server_version=get_env("MCP_SERVER_VERSION", "1.0.0"),
                tool_per_trigger=get_env("TOOL_PER_TRIGGER", False, bool),
                log_level=LogLevel(get_env("LOG_LEVEL", "INFO").upper()),
                log_format=get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
                log_file=get_env("LOG_FILE", None),
                log_structured=get_env("LOG_STRUCTURED", False, bool),
                log_max_size=get_env("LOG_MAX_SIZE", 10485760, int),
                log_backup_count=get_env("LOG_BACKUP_COUNT", 5, int),
                slow_request_threshold=get_env("SLOW_REQUEST_THRESHOLD", 5.0, float),
                enable_performance_monitoring=get_env("ENABLE_PERFORMANCE_MONITORING", True, bool),
                cors_origins=get_env("CORS_ORIGINS", ["*"], list),
                cors_methods=get_env("CORS_METHODS", ["GET", "POST", "PUT", "DELETE"], list)
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment configuration: {e}")


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file and the environment."""
    global _config

    if config_file and os.path.exists(config_file):
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        load_dotenv('.env')

    _config = AppConfig.from_env()
    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> List[str]:
    """
    Validate configuration settings.

    Returns:
        Non-fatal warnings

    Raises:
        ConfigurationError: If a setting cannot work
    """
    errors = []
    warnings = []

    if config.log_file:
        log_dir = os.path.dirname(config.log_file)
        if log_dir and not os.path.exists(log_dir):
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as e:
                errors.append(f"Cannot create log directory {log_dir}: {e}")

    if config.max_node_workers > 64:
        warnings.append("High node worker count may impact performance")

    if config.is_production and "*" in config.cors_origins:
        warnings.append("CORS allows every origin outside debug mode")

    if errors:
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")
    return warnings


# Environment-specific configurations
def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        reload=True,
        log_level=LogLevel.DEBUG,
        enable_performance_monitoring=True
    )


def get_production_config() -> AppConfig:
    """Get production configuration."""
    return AppConfig(
        debug=False,
        reload=False,
        log_level=LogLevel.INFO,
        log_structured=True,
        enable_performance_monitoring=True,
        cors_origins=[]  # Restrict CORS in production
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        log_level=LogLevel.WARNING,
        max_node_workers=2,
        enable_performance_monitoring=False
    )
