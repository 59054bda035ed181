from __future__ import annotations

import json

import pytest

from config import settings as settings_module
from config.settings import (
    DEFAULT_FORMAT_SELECTOR,
    DIRECT_FETCH_TIMEOUT_SECONDS,
    JOB_TIMEOUT_SECONDS,
    UPLOAD_TIMEOUT_SECONDS,
    load_settings,
    settings_from_config,
)


def test_defaults() -> None:
    settings = settings_from_config(None)

    assert settings.job_timeout == 300
    assert settings.download_timeout == 600
    assert settings.metadata_timeout == 120
    assert settings.upload_timeout == UPLOAD_TIMEOUT_SECONDS
    assert settings.max_retries == 5
    assert settings.upload_max_retries == 3
    assert settings.retry_batch_size == 10
    assert settings.ytdlp.format_selector == DEFAULT_FORMAT_SELECTOR
    assert settings.accepted_mime_prefixes == ("video/",)


def test_direct_fetch_timeout_tracks_job_timeout() -> None:
    assert DIRECT_FETCH_TIMEOUT_SECONDS == JOB_TIMEOUT_SECONDS
    assert settings_from_config({"timeouts": {"job": 90}}).direct_fetch_timeout == 90


def test_partial_overrides_merge_with_defaults() -> None:
    settings = settings_from_config(
        {"ytdlp": {"cookies_from_browser": "chrome"}, "timeouts": {"download": 30, "upload": 900}}
    )

    assert settings.ytdlp.cookies_from_browser == "chrome"
    assert settings.ytdlp.merge_output_format == "mp4"
    assert settings.download_timeout == 30
    assert settings.upload_timeout == 900
    assert settings.metadata_timeout == 120


@pytest.mark.parametrize("workers", [0, -1])
def test_invalid_worker_count(workers) -> None:
    with pytest.raises(ValueError):
        settings_from_config({"workers": workers})


def test_missing_worker_count_uses_default() -> None:
    assert settings_from_config({"workers": None}).workers == 2


def test_load_settings_from_config_dir(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"max_retries": 7}))
    monkeypatch.setattr("engine.paths.CONFIG_DIR", tmp_path)

    assert load_settings().max_retries == 7


def test_load_settings_missing_file_uses_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr("engine.paths.CONFIG_DIR", tmp_path)

    assert load_settings().max_retries == settings_module.DEFAULT_MAX_RETRIES


def test_load_settings_rejects_bad_json(tmp_path, monkeypatch) -> None:
    (tmp_path / "config.json").write_text("{not json")
    monkeypatch.setattr("engine.paths.CONFIG_DIR", tmp_path)

    with pytest.raises(ValueError):
        load_settings()
