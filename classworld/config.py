"""
Classroom World - Configuration Management
Supports .env files and runtime configuration for the cadence engine and the HTTP server.
"""

from typing import Dict, Any, List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache


# ============================================
# WORLD / CADENCE CONFIGURATION
# ============================================

class WorldConfig(BaseSettings):
    """Cadence engine configuration: timezone, triggers, leveling constants."""

    timezone: str = Field(
        default="America/Toronto",
        description="IANA timezone every date key and wall-clock trigger is computed in"
    )

    # Daily care spawn (wall clock, fixed timezone)
    daily_spawn_hour: int = Field(default=6, ge=0, le=23)
    daily_spawn_minute: int = Field(default=0, ge=0, le=59)

    # Weekly evaluation (ISO weekday: Monday=1 ... Sunday=7)
    weekly_eval_weekday: int = Field(default=5, ge=1, le=7)
    weekly_eval_hour: int = Field(default=17, ge=0, le=23)
    weekly_eval_minute: int = Field(default=0, ge=0, le=59)
    week_end_weekday: int = Field(
        default=5,
        ge=1,
        le=7,
        description="ISO weekday the trailing 7-day scoring window always ends on"
    )

    # Leveling
    xp_per_level: int = Field(default=100, ge=1)
    track_points_per_level: int = Field(default=4, ge=1)
    special_min_buckets: int = Field(
        default=2,
        ge=1,
        le=3,
        description="Present buckets required before the top weekly tier is reachable"
    )

    # Tick sizing
    due_batch_size: int = Field(default=500, ge=1, le=10000)
    expire_batch_size: int = Field(default=1000, ge=1, le=10000)
    tick_concurrency: int = Field(default=8, ge=1, le=64)

    # Background service
    tick_interval_seconds: int = Field(default=300, ge=10, le=3600)
    background_ticks_enabled: bool = Field(default=True)

    model_config = {
        "env_prefix": "WORLD_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# SERVER CONFIGURATION
# ============================================

class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed by the CORS middleware"
    )
    cron_secret: str = Field(
        default="",
        description="Bearer token the periodic driver must present to run a tick"
    )

    model_config = {
        "env_prefix": "SERVER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# CACHED CONFIGURATION INSTANCES
# ============================================

@lru_cache()
def get_world_config() -> WorldConfig:
    """Get cached world configuration instance."""
    return WorldConfig()


@lru_cache()
def get_server_config() -> ServerConfig:
    """Get cached server configuration instance."""
    return ServerConfig()


def reload_config():
    """Clear configuration cache and reload from environment."""
    get_world_config.cache_clear()
    get_server_config.cache_clear()


# ============================================
# CONFIGURATION SUMMARY
# ============================================

def get_config_summary(
    world: Optional[WorldConfig] = None,
    server: Optional[ServerConfig] = None
) -> Dict[str, Any]:
    """
    Get a summary of all configuration values.
    Falls back to the cached instances when none are passed in.
    """
    world = world or get_world_config()
    server = server or get_server_config()

    return {
        "world": {
            "timezone": world.timezone,
            "daily_spawn": f"{world.daily_spawn_hour:02d}:{world.daily_spawn_minute:02d}",
            "weekly_eval": f"iso-day {world.weekly_eval_weekday} "
                           f"{world.weekly_eval_hour:02d}:{world.weekly_eval_minute:02d}",
            "week_end_weekday": world.week_end_weekday,
            "xp_per_level": world.xp_per_level,
            "track_points_per_level": world.track_points_per_level,
            "tick_interval_seconds": world.tick_interval_seconds,
            "background_ticks": world.background_ticks_enabled,
        },
        "server": {
            "cors_origins": server.cors_origins,
            "has_cron_secret": bool(server.cron_secret),
        },
    }
