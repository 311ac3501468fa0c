import pytest

from scrapectl.config import Settings
from scrapectl.utils import now_iso, parse_duration


@pytest.mark.parametrize("text, seconds", [
    ("3", 3.0),
    ("2.5", 2.5),
    ("0", 0.0),
    ("20s", 20.0),
    ("1m30s", 90.0),
    (" 1h ", 3600.0),
])
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


@pytest.mark.parametrize("text", ["", "soon", "-1", "5x"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_now_iso_is_utc_z():
    assert now_iso().endswith("Z")


def test_settings_from_config():
    s = Settings.from_config({"timeout_seconds": "45s", "headless": "false", "extractor_script": " "})
    assert s.timeout_seconds == 45.0
    assert s.inter_target_delay == 3.0
    assert s.scroll_count == 2
    assert s.headless is False
    assert s.extractor_script is None
