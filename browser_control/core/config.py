"""
Configuration schema for the browser control server.

The effective configuration is a closed, frozen tree of pydantic models.
Keys may be written in snake_case or camelCase in configuration files.
"""
import logging
from typing import List, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, StrictBool
from pydantic.alias_generators import to_camel, to_snake

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

FEATURE_FLAGS = (
    "enable_api_tools",
    "enable_browser_tools",
    "enable_advanced_tools",
    "enable_file_tools",
    "enable_network_tools",
    "enable_other_tools",
    "enable_debug_mode",
)


class ConfigSection(BaseModel):
    """Base for every configuration section."""
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ServerSettings(ConfigSection):
    name: str = "browser-control-server"
    version: str = "1.0.0"
    protocol_version: str = "2024-11-05"
    host: str = "127.0.0.1"
    port: int = 3000
    transport: Literal["stdio", "http"] = "stdio"


class FeatureFlags(ConfigSection):
    enable_api_tools: StrictBool = False
    enable_browser_tools: StrictBool = False
    enable_advanced_tools: StrictBool = False
    enable_file_tools: StrictBool = False
    enable_network_tools: StrictBool = False
    enable_other_tools: StrictBool = False
    enable_debug_mode: StrictBool = False


class ApiRequestSettings(ConfigSection):
    max_sessions: int = Field(default=50, ge=1)
    max_concurrent_sessions: int = Field(default=10, ge=1)
    session_timeout: float = Field(default=600.0, gt=0)
    max_session_timeout: float = Field(default=300.0, gt=0)
    default_timeout: float = Field(default=30.0, gt=0)
    enable_retries: StrictBool = True
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    retry_backoff: Literal["fixed", "exponential"] = "fixed"
    retryable_statuses: List[int] = Field(default_factory=lambda: [500, 502, 503, 504])
    rate_limit_enabled: StrictBool = False
    max_requests_per_second: int = Field(default=10, ge=1)
    rate_limit_scope: Literal["process", "session"] = "process"
    enable_request_logging: StrictBool = True
    enable_response_logging: StrictBool = True
    user_agent: str = "Browser-Control-Server/1.0"

    @property
    def session_limit(self) -> int:
        """Number of live sessions allowed at once."""
        return min(self.max_sessions, self.max_concurrent_sessions)


class SessionStatusSettings(ConfigSection):
    max_history_entries: int = Field(default=1000, ge=1)
    include_detailed_logs: StrictBool = True


class SessionReportSettings(ConfigSection):
    default_theme: Literal["light", "dark", "auto"] = "light"
    default_format: Literal["html", "json", "markdown"] = "html"
    include_request_data: StrictBool = True
    include_response_data: StrictBool = True
    include_timing: StrictBool = True
    max_report_size: int = Field(default=10 * 1024 * 1024, ge=1)
    enable_compression: StrictBool = True
    compression_level: int = Field(default=6, ge=1, le=9)
    output_subdir: str = "reports"


class BrowserSettings(ConfigSection):
    max_instances: int = Field(default=10, ge=1)
    default_headless: StrictBool = True
    launch_timeout: float = Field(default=30.0, gt=0)
    navigation_timeout: float = Field(default=30.0, gt=0)
    allowed_protocols: List[str] = Field(default_factory=lambda: ["http", "https"])
    screenshot_format: Literal["png", "jpeg"] = "png"
    chrome_flags: List[str] = Field(default_factory=list)


class ToolSettings(ConfigSection):
    api_request: ApiRequestSettings = Field(default_factory=ApiRequestSettings)
    api_session_status: SessionStatusSettings = Field(default_factory=SessionStatusSettings)
    api_session_report: SessionReportSettings = Field(default_factory=SessionReportSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)


class LoggingSettings(ConfigSection):
    level: Literal["debug", "info", "warning", "error"] = "info"
    enable_tool_debug: StrictBool = False


class SecuritySettings(ConfigSection):
    max_request_size: int = Field(default=10 * 1024 * 1024, ge=1)
    rate_limiting: StrictBool = False
    max_requests_per_minute: int = Field(default=100, ge=1)


class EffectiveConfig(ConfigSection):
    """Fully merged, environment-resolved settings for the running process."""
    server: ServerSettings = Field(default_factory=ServerSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    tools: ToolSettings = Field(default_factory=ToolSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    output_dir: str = "output"

    def is_feature_enabled(self, flag: str) -> bool:
        """Check a feature flag by snake_case or camelCase name; unknown flags are off."""
        return bool(getattr(self.features, to_snake(flag), False))

    def log_summary(self):
        """Log the current configuration."""
        logger.info("Server Configuration:")
        logger.info(f"  Name: {self.server.name} {self.server.version}")
        logger.info(f"  Transport: {self.server.transport}")
        logger.info(f"  Host: {self.server.host}")
        logger.info(f"  Port: {self.server.port}")
        logger.info(f"  Debug Mode: {self.features.enable_debug_mode}")
        logger.info(f"  Output Directory: {self.output_dir}")
        enabled = [flag for flag in FEATURE_FLAGS if self.is_feature_enabled(flag)]
        logger.info(f"  Enabled Features: {enabled}")
