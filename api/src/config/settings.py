"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="inkwell", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Authentication (token verification only, tokens are issued elsewhere)
    auth_secret_key: str = Field(
        default="dev-jwt-secret-key-change-in-production-32chars!",
        description="JWT signing key (min 32 chars)",
    )
    auth_algorithm: str = Field(default="HS256", description="JWT algorithm")
    auth_access_token_expire_minutes: int = Field(
        default=15, description="Access token expiration (minutes)"
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(default=10, description="Max Redis connections")
    redis_socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Redis connect timeout"
    )
    redis_retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    redis_health_check_interval: int = Field(
        default=30, description="Health check interval"
    )

    # Cassandra
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Cassandra hosts"
    )
    cassandra_port: int = Field(default=9042, description="Cassandra port")
    cassandra_keyspace: str = Field(default="inkwell", description="Cassandra keyspace")
    cassandra_username: str | None = Field(default=None, description="Cassandra user")
    cassandra_password: str | None = Field(
        default=None, description="Cassandra password"
    )
    cassandra_protocol_version: int = Field(default=4, description="Protocol version")
    cassandra_connect_timeout: float = Field(
        default=10.0, description="Connect timeout"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="CORS max age")

    # Comments
    comment_max_length: int = Field(
        default=2000, description="Maximum comment length in characters"
    )
    comment_edit_window_hours: int = Field(
        default=24, description="Hours an author may edit a comment (0 = no limit)"
    )
    comment_hash_salt: str = Field(
        default="change-me-comment-hash-salt",
        description="Salt for IP and user agent hashes",
    )
    comment_quote_max_length: int = Field(
        default=50, description="Maximum length of a quoted excerpt"
    )
    comment_list_scan_limit: int = Field(
        default=500, description="Rows read per index query when listing comments"
    )
    comment_allowed_tags: list[str] = Field(
        default=["b", "i", "em", "strong", "code"],
        description="Formatting tags kept by the sanitizer",
    )

    # Moderation
    moderation_pending_threshold: float = Field(
        default=0.7, description="Spam/toxicity score that sends a comment to review"
    )
    moderation_spam_threshold: float = Field(
        default=0.8, description="Default auto-moderation spam threshold"
    )
    moderation_toxicity_threshold: float = Field(
        default=0.8, description="Default auto-moderation toxicity threshold"
    )
    moderation_flag_threshold: int = Field(
        default=5, description="Default auto-moderation flag threshold"
    )
    moderation_auto_limit: int = Field(
        default=100, description="Comments scanned per auto-moderation run"
    )
    moderation_bulk_max: int = Field(
        default=100, description="Maximum comments per bulk moderation call"
    )

    # Engagement score
    score_like_weight: float = Field(default=1.0, description="Weight per like")
    score_dislike_weight: float = Field(default=1.0, description="Weight per dislike")
    score_reply_weight: float = Field(default=0.5, description="Weight per reply")
    score_recency_weight: float = Field(
        default=2.0, description="Weight of the recency bonus"
    )
    score_decay_hours: float = Field(
        default=168.0, description="Hours until the recency bonus reaches zero"
    )

    # Cache
    cache_enabled: bool = Field(default=True, description="Enable comment caching")
    cache_list_ttl: int = Field(default=300, description="List cache TTL (seconds)")
    cache_thread_ttl: int = Field(default=600, description="Thread cache TTL (seconds)")
    cache_stats_ttl: int = Field(default=900, description="Stats cache TTL (seconds)")

    # Rate limiting and abuse guards
    rate_limit_enabled: bool = Field(default=True, description="Enable rate limiting")
    rate_limit_general_requests: int = Field(
        default=50, description="Comment API requests per window"
    )
    rate_limit_general_window: int = Field(
        default=900, description="Comment API window (seconds)"
    )
    rate_limit_create_requests: int = Field(
        default=5, description="Comment creations per window"
    )
    rate_limit_create_window: int = Field(
        default=60, description="Comment creation window (seconds)"
    )
    rate_limit_reaction_requests: int = Field(
        default=30, description="Reactions per window"
    )
    rate_limit_reaction_window: int = Field(
        default=60, description="Reaction window (seconds)"
    )
    rate_limit_flag_requests: int = Field(default=10, description="Flags per window")
    rate_limit_flag_window: int = Field(
        default=300, description="Flag window (seconds)"
    )
    spam_velocity_max_comments: int = Field(
        default=20, description="Comments per user per velocity window"
    )
    spam_velocity_window: int = Field(
        default=3600, description="Velocity window (seconds)"
    )
    spam_duplicate_window: int = Field(
        default=300, description="Window for identical content detection (seconds)"
    )
    spam_ip_max_comments: int = Field(
        default=30, description="Comments per hashed IP per IP window"
    )
    spam_ip_window: int = Field(default=3600, description="IP window (seconds)")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
