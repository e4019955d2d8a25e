"""Core configuration - centralized config for the wishtree package.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from wishtree.core.config import get_config
    config = get_config()

    ladder = config.ladder
    cap = config.partial_settlement_cap
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigException


def parse_ladder(raw: str) -> tuple[int, ...]:
    """Parse a comma-separated percentage ladder such as ``"60,20,10,5,5"``.

    Raises:
        ConfigException: If any level is not a non-negative integer or the
            levels sum to more than 100.
    """
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if not parts:
        raise ConfigException("Distribution ladder must define at least one level")
    try:
        levels = tuple(int(p) for p in parts)
    except ValueError as e:
        raise ConfigException(f"Distribution ladder must be integers: {raw!r}") from e
    if any(level < 0 for level in levels):
        raise ConfigException(f"Distribution ladder levels must be non-negative: {raw!r}")
    if sum(levels) > 100:
        raise ConfigException(f"Distribution ladder exceeds 100%: {raw!r} sums to {sum(levels)}")
    return levels


class CoreSettings(BaseSettings):
    """Core configuration settings for Wishtree.

    Settings can be configured via environment variables with the
    WISHTREE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ==========================================================================
    # DATABASE SETTINGS
    # ==========================================================================

    db_host: str = Field(
        default="localhost",
        description="Database host",
        validation_alias="WISHTREE_DB_HOST",
    )
    db_port: int = Field(
        default=5432,
        description="Database port",
        validation_alias="WISHTREE_DB_PORT",
    )
    db_name: str = Field(
        default="wishtree",
        description="Database name",
        validation_alias="WISHTREE_DB_NAME",
    )
    db_user: str = Field(
        default="wishtree",
        description="Database user",
        validation_alias="WISHTREE_DB_USER",
    )
    db_password: str = Field(
        default="",
        description="Database password",
        validation_alias="WISHTREE_DB_PASSWORD",
    )

    # Connection pool settings
    db_pool_min: int = Field(
        default=2,
        description="Minimum pool connections",
        validation_alias="WISHTREE_DB_POOL_MIN",
    )
    db_pool_max: int = Field(
        default=10,
        description="Maximum pool connections",
        validation_alias="WISHTREE_DB_POOL_MAX",
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a pooled connection",
        validation_alias="WISHTREE_DB_POOL_TIMEOUT",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="WISHTREE_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="WISHTREE_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="WISHTREE_LOG_FILE",
    )

    # ==========================================================================
    # DISTRIBUTION SETTINGS
    # ==========================================================================

    distribution_ladder: str = Field(
        default="60,20,10,5,5",
        description="Percent paid per level, origin node first",
        validation_alias="WISHTREE_DISTRIBUTION_LADDER",
    )
    partial_settlement_cap: float = Field(
        default=0.5,
        description="Share of a wish's tokens one non-closing acceptance may take",
        validation_alias="WISHTREE_PARTIAL_SETTLEMENT_CAP",
    )

    # ==========================================================================
    # VOTING SETTINGS
    # ==========================================================================

    default_required_votes: int = Field(
        default=10,
        description="Votes needed before a session can resolve",
        validation_alias="WISHTREE_DEFAULT_REQUIRED_VOTES",
    )
    default_approval_percentage: float = Field(
        default=60.0,
        description="Approval percentage needed to pass a vote",
        validation_alias="WISHTREE_DEFAULT_APPROVAL_PERCENTAGE",
    )
    default_voting_duration_hours: int = Field(
        default=168,
        description="Voting session length in hours",
        validation_alias="WISHTREE_DEFAULT_VOTING_DURATION_HOURS",
    )

    # ==========================================================================
    # TOKEN ACCOUNT SETTINGS
    # ==========================================================================

    initial_user_tokens: int = Field(
        default=1000,
        description="Tokens credited when a user account is opened",
        validation_alias="WISHTREE_INITIAL_USER_TOKENS",
    )

    @field_validator("distribution_ladder")
    @classmethod
    def _check_ladder(cls, value: str) -> str:
        parse_ladder(value)
        return value

    @field_validator("partial_settlement_cap")
    @classmethod
    def _check_cap(cls, value: float) -> float:
        if not 0 < value <= 1:
            raise ConfigException(f"Partial settlement cap must be in (0, 1], got {value}")
        return value

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def ladder(self) -> tuple[int, ...]:
        """Distribution ladder as integer percentages."""
        return parse_ladder(self.distribution_ladder)

    @property
    def database_url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def connection_params(self) -> dict:
        """Get database connection parameters dict."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }

    @property
    def pool_config(self) -> dict:
        """Get connection pool configuration."""
        return {
            "minconn": self.db_pool_min,
            "maxconn": self.db_pool_max,
        }


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global configuration instance.

    Returns:
        The singleton CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
