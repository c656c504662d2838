"""Tests for the typer CLI: offline commands against a temporary cache."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from tft_meta_sync.cache.store import CacheStore
from tft_meta_sync.cli import app
from tft_meta_sync.models.domain import CacheKey, Domain

runner = CliRunner()


@pytest.fixture
def offline_config(tmp_path, monkeypatch):
    """Config with both providers disabled and logs under tmp_path."""
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "offline.toml"
    path.write_text(
        f"""
[database]
db_path = "{(tmp_path / 'cache.db').as_posix()}"

[providers.metatft]
enabled = false

[providers.tactics_tools]
enabled = false

[logging]
level = "WARNING"
log_file = "{(tmp_path / 'logs' / 'sync.log').as_posix()}"
""",
        encoding="utf-8",
    )
    return path


def _invoke(*args: str):
    return runner.invoke(app, list(args))


class TestSetupCommands:
    def test_init_db(self, offline_config, tmp_path):
        result = _invoke("init-db", "--config", str(offline_config))
        assert result.exit_code == 0, result.output
        assert "[OK] Database ready." in result.output
        assert (tmp_path / "cache.db").exists()

    def test_validate_config(self, offline_config):
        result = _invoke("validate-config", "--config", str(offline_config))
        assert result.exit_code == 0, result.output
        assert "none enabled" in result.output

    def test_missing_config_exits_1(self, tmp_path):
        result = _invoke("validate-config", "--config", str(tmp_path / "missing.toml"))
        assert result.exit_code == 1


class TestCacheCommands:
    def test_show_without_data_exits_1(self, offline_config):
        result = _invoke("show", "items", "--config", str(offline_config))
        assert result.exit_code == 1
        assert "No cached data" in result.output

    def test_show_prints_cached_records(self, offline_config, tmp_path, items_model):
        store = CacheStore(str(tmp_path / "cache.db"))
        store.put(CacheKey(Domain.ITEMS, "combined", "latest"), items_model)

        result = _invoke("show", "items", "--config", str(offline_config))

        assert result.exit_code == 0, result.output
        assert "Deathblade" in result.output

    def test_unknown_domain(self, offline_config):
        result = _invoke("show", "champions", "--config", str(offline_config))
        assert result.exit_code == 1

    def test_cache_status_empty(self, offline_config):
        result = _invoke("cache-status", "--config", str(offline_config))
        assert result.exit_code == 0, result.output
        assert "No cached data" in result.output

    def test_clear_cache(self, offline_config, tmp_path, items_model):
        store = CacheStore(str(tmp_path / "cache.db"))
        store.put(CacheKey(Domain.ITEMS, "combined", "latest"), items_model)

        result = _invoke("clear-cache", "--yes", "--config", str(offline_config))

        assert result.exit_code == 0, result.output
        assert store.status().is_available is False


class TestSyncCommand:
    def test_requires_domain_or_all(self, offline_config):
        result = _invoke("sync", "--config", str(offline_config))
        assert result.exit_code == 1

    def test_all_with_no_providers_reports_failure(self, offline_config, tmp_path):
        result = _invoke("sync", "--all", "--config", str(offline_config))

        assert result.exit_code == 2, result.output
        assert "status=failed" in result.output
        runs = CacheStore(str(tmp_path / "cache.db")).recent_sync_runs()
        assert runs[0].status == "failed"

    def test_disabled_provider_rejected(self, offline_config):
        result = _invoke("sync", "--domain", "items", "--source", "metatft", "--config", str(offline_config))
        assert result.exit_code == 1
