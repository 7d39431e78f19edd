import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from hostpush.config import Settings, _load_config_file


def test_settings_reads_state_config_json(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text(
        json.dumps(
            {
                "vapid_subject": "mailto:hosts@example.com",
                "push_ttl_s": 600,
            }
        )
    )

    settings = _load_config_file(Settings(state_dir=str(tmp_path)))

    assert settings.vapid_subject == "mailto:hosts@example.com"
    assert settings.push_ttl_s == 600


def test_corrupt_config_json_ignored(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{nope")

    settings = _load_config_file(Settings(state_dir=str(tmp_path)))

    assert settings.push_ttl_s == 86400


def test_env_vars(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VAPID_PUBLIC_KEY", "pub")
    monkeypatch.setenv("VAPID_PRIVATE_KEY", "priv")
    monkeypatch.setenv("PUSH_SERVICE_SECRET", "s3cret")
    monkeypatch.setenv("HOSTPUSH_STATE", str(tmp_path))

    settings = Settings()

    assert settings.vapid_public_key == "pub"
    assert settings.vapid_private_key == "priv"
    assert settings.service_secret == "s3cret"
    assert settings.push_subs_path == tmp_path / "push_subscriptions.json"


def test_vapid_expiry_capped(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        Settings(state_dir=str(tmp_path), vapid_expiry_s=86401)


def test_push_config_from_settings(tmp_path: Path) -> None:
    settings = Settings(
        state_dir=str(tmp_path),
        vapid_subject="mailto:a@b.c",
        vapid_expiry_s=3600,
        push_ttl_s=120,
        push_urgency="normal",
    )

    config = settings.push_config()

    assert config.subject == "mailto:a@b.c"
    assert config.expiry_seconds == 3600
    assert config.ttl_seconds == 120
    assert config.urgency == "normal"
