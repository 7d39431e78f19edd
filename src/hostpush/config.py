import json
from pathlib import Path

from pydantic import AliasChoices, Field, computed_field
from pydantic_settings import BaseSettings

from hostpush.notifications.push import PushConfig


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # API
    app_name: str = "hostpush"
    app_version: str = "0.1.0"

    # Paths
    state_dir: str = Field(
        default=str(Path.home() / ".hostpush"),
        validation_alias=AliasChoices("state_dir", "HOSTPUSH_STATE"),
        description="Directory for state files (config.json, subscriptions)",
    )

    # VAPID (base64url, raw P-256 point and scalar)
    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_subject: str = "mailto:notifications@localhost"
    vapid_expiry_s: int = Field(default=12 * 60 * 60, gt=0, le=24 * 60 * 60)

    # Outbound push requests
    push_ttl_s: int = Field(default=24 * 60 * 60, ge=0)
    push_urgency: str = "high"
    push_timeout_s: float = 10.0

    # Bearer token required by the send endpoint
    service_secret: str = Field(
        default="",
        validation_alias=AliasChoices("service_secret", "PUSH_SERVICE_SECRET"),
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def push_subs_path(self) -> Path:
        """JSON file for push subscriptions."""
        return Path(self.state_dir) / "push_subscriptions.json"

    def push_config(self) -> PushConfig:
        """Immutable dispatch parameters."""
        return PushConfig(
            subject=self.vapid_subject,
            expiry_seconds=self.vapid_expiry_s,
            ttl_seconds=self.push_ttl_s,
            urgency=self.push_urgency,
        )

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


_override: Settings | None = None


def get_settings() -> Settings:
    """Return the active settings instance."""
    if _override:
        return _override
    settings = Settings()
    return _load_config_file(settings)


def _load_config_file(settings: Settings) -> Settings:
    """Load and merge config.json if it exists."""
    config_path = Path(settings.state_dir) / "config.json"
    if not config_path.exists():
        return settings

    try:
        data = json.loads(config_path.read_text())
        if not isinstance(data, dict):
            return settings

        if "state_dir" in data and isinstance(data["state_dir"], str):
            data["state_dir"] = str(Path(data["state_dir"]).expanduser())

        return settings.model_copy(update=data)
    except (json.JSONDecodeError, OSError):
        return settings


def override_settings(s: Settings | None) -> None:
    """Swap in a custom Settings (use None to reset)."""
    global _override  # noqa: PLW0603
    _override = s
