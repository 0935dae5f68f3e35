import os

import pytest

from mpesa_ingest.core import settings


def test_get_env_int_falls_back_on_garbage(monkeypatch):
    monkeypatch.setenv("DEDUP_WINDOW_SECONDS", "soon")
    assert settings.get_env_int("DEDUP_WINDOW_SECONDS", 60) == 60


def test_get_env_int_respects_minimum(monkeypatch):
    monkeypatch.setenv("UNMATCHED_LOG_SIZE", "0")
    assert settings.get_env_int("UNMATCHED_LOG_SIZE", 200, min_value=1) == 200
    monkeypatch.setenv("UNMATCHED_LOG_SIZE", "25")
    assert settings.get_env_int("UNMATCHED_LOG_SIZE", 200, min_value=1) == 25


def test_get_env_float(monkeypatch):
    monkeypatch.setenv("STORE_TIMEOUT", "2.5")
    assert settings.get_env_float("STORE_TIMEOUT", 10.0) == 2.5
    monkeypatch.setenv("STORE_TIMEOUT", "fast")
    assert settings.get_env_float("STORE_TIMEOUT", 10.0) == 10.0


@pytest.mark.parametrize(("raw", "expected"), [("true", True), ("0", False), ("No", False), ("maybe", True)])
def test_get_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("SERIALIZE_COMMITS", raw)
    assert settings.get_env_bool("SERIALIZE_COMMITS", True) is expected


def test_read_config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "# ingest settings\n"
        "STORE_URL: https://example.supabase.co\n"
        "STORE_TOKEN: 'abc#123'\n"
        "DEDUP_WINDOW_SECONDS: 90 # seconds\n"
        "EMPTY:\n"
        "not a setting\n",
        encoding="utf-8",
    )

    values = settings.read_config_file(str(path))

    assert values == {
        "STORE_URL": "https://example.supabase.co",
        "STORE_TOKEN": "abc#123",
        "DEDUP_WINDOW_SECONDS": "90",
    }


def test_read_config_file_missing(tmp_path):
    assert settings.read_config_file(str(tmp_path / "absent.yaml")) == {}


def test_config_file_does_not_override_environment(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text("STORE_TIMEOUT: 3\nDEDUP_WINDOW_SECONDS: 30\n", encoding="utf-8")
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv("STORE_TIMEOUT", "7")
    monkeypatch.setenv("DEDUP_WINDOW_SECONDS", "placeholder")
    monkeypatch.delenv("DEDUP_WINDOW_SECONDS")

    settings.load_environment()

    assert os.environ["STORE_TIMEOUT"] == "7"
    assert os.environ["DEDUP_WINDOW_SECONDS"] == "30"
    assert settings.get_config_path() == str(tmp_path / "config.yaml")


def test_secrets_are_masked():
    assert settings._mask_env_value("STORE_TOKEN", "eyJhbGciOiJIUzI1NiJ9") == "ey...J9"
    assert settings._mask_env_value("STORE_TOKEN", "abc") == "****"
    assert settings._mask_env_value("STORE_URL", "https://x.supabase.co") == "https://x.supabase.co"
