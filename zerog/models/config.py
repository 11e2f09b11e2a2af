"""Application configuration models with Pydantic validation."""

from pydantic import BaseModel, Field


class RemoteConfig(BaseModel):
    """Remote persistence service configuration."""

    enabled: bool = Field(
        default=True,
        description="Whether local mutations are pushed to the remote store",
    )
    base_url: str = Field(
        default="http://localhost:3001/api",
        description="Base URL of the remote persistence REST service",
    )
    timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Per-request timeout in seconds",
    )
    queue_size: int = Field(
        default=1000,
        ge=10,
        le=100000,
        description="Maximum pending sync commands before new pushes are dropped",
    )


class ReminderConfig(BaseModel):
    """Deadline reminder configuration."""

    enabled: bool = Field(
        default=True,
        description="Whether reminder notifications are permitted",
    )
    lead_minutes: int = Field(
        default=15,
        ge=0,
        le=24 * 60,
        description="Minutes before the deadline at which a reminder fires",
    )


class AchievementConfig(BaseModel):
    """Achievement toast configuration."""

    display_seconds: float = Field(
        default=4.0,
        gt=0,
        le=60,
        description="How long a newly unlocked achievement stays on display",
    )


class StorageConfig(BaseModel):
    """Local state persistence."""

    data_dir: str | None = Field(
        default="data",
        description="Directory for state.yaml; None keeps state in memory only",
    )
    seed_demo_tasks: bool = Field(
        default=True,
        description="Seed placeholder tasks when the local store starts empty",
    )


class AppConfig(BaseModel):
    """Root application configuration.

    Loaded from config.yaml and validated with Pydantic.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    reminders: ReminderConfig = Field(default_factory=ReminderConfig)
    achievements: AchievementConfig = Field(default_factory=AchievementConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    port: int = Field(
        default=5050,
        ge=1024,
        le=65535,
        description="Port for the Flask server",
    )
    debug: bool = Field(
        default=False,
        description="Enable Flask debug mode",
    )
