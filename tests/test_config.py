from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from discovery.config import PipelineSettings, load_settings

REPO_SETTINGS = Path(__file__).resolve().parent.parent / "config" / "settings.toml"


def test_repository_settings_load():
    settings = load_settings(REPO_SETTINGS)
    assert settings.worker.rate_limit_per_sec == 2
    assert settings.freshness.ttl("organization") == timedelta(hours=24)
    assert settings.freshness.ttl("portfolio") == timedelta(days=7)
    assert settings.snapshot.pagination_selector is None
    assert settings.reconcile.dedup == "block"


def test_missing_file_falls_back_to_defaults(tmp_path):
    assert load_settings(tmp_path / "absent.toml") == PipelineSettings()


def test_partial_file_keeps_other_defaults(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('[discovery]\nmax_depth = 3\n\n[snapshot]\npagination_selector = ".next"\n', encoding="utf-8")
    settings = load_settings(path)
    assert settings.discovery.max_depth == 3
    assert settings.discovery.organizations == 25
    assert settings.snapshot.pagination_selector == ".next"


def test_invalid_values_are_rejected(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text("[reconcile]\nchunk_chars = 10\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_settings(path)
