from pathlib import Path

from gallery.config import load_gallery_config


def test_defaults(monkeypatch):
    for name in (
        "GALLERY_PAGE_SIZE",
        "GALLERY_RETRY_ATTEMPTS",
        "GALLERY_RETRY_BASE_DELAY",
        "GALLERY_RETRY_MAX_DELAY",
        "IMAGE_CACHE_MAX_ENTRIES",
        "IMAGE_MAX_SIDE",
        "GALLERY_SESSION_PATH",
        "GALLERY_TIMEZONE",
    ):
        monkeypatch.delenv(name, raising=False)

    config = load_gallery_config()

    assert config.page_size == 10
    assert config.image_cache_max_entries == 64
    assert config.image_max_side is None
    assert config.session_path == Path("data/session.json")
    assert str(config.timezone) == "UTC"
    policy = config.retry_policy
    assert (policy.max_attempts, policy.base_delay, policy.max_delay) == (3, 0.5, 8.0)


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("GALLERY_PAGE_SIZE", "25")
    monkeypatch.setenv("GALLERY_RETRY_ATTEMPTS", "1")
    monkeypatch.setenv("IMAGE_CACHE_MAX_ENTRIES", "0")
    monkeypatch.setenv("IMAGE_MAX_SIDE", "1024")
    monkeypatch.setenv("GALLERY_SESSION_PATH", str(tmp_path / "s.json"))
    monkeypatch.setenv("GALLERY_TIMEZONE", "Europe/Kaliningrad")

    config = load_gallery_config()

    assert config.page_size == 25
    assert config.retry_policy.max_attempts == 1
    assert config.image_cache_max_entries == 0
    assert config.image_max_side == 1024
    assert config.session_path == tmp_path / "s.json"
    assert str(config.timezone) == "Europe/Kaliningrad"


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("GALLERY_PAGE_SIZE", "0")
    monkeypatch.setenv("GALLERY_RETRY_BASE_DELAY", "-1")
    monkeypatch.setenv("IMAGE_MAX_SIDE", "huge")
    monkeypatch.setenv("GALLERY_TIMEZONE", "Mars/Olympus")

    config = load_gallery_config()

    assert config.page_size == 10
    assert config.retry_base_delay == 0.5
    assert config.image_max_side is None
    assert str(config.timezone) == "UTC"
