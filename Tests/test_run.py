# Tests/test_run.py
#
# Imports
import logging

import pytest

import run
from hive_sync.DB.Sync_State_DB import SyncStateDatabase
from hive_sync.Utils.timestamps import utc_now
#
########################################################################################################################
#
# Fixtures:


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    for env_var in ("HIVE_SYNC_CATALOG_DB", "HIVE_SYNC_SYNC_DB", "HIVE_SYNC_LOG_LEVEL", "HIVE_SYNC_PULL_PAGE_SIZE"):
        monkeypatch.delenv(env_var, raising=False)
    path = tmp_path / "config.toml"
    path.write_text(
        f'[database]\ncatalog_db_path = "{(tmp_path / "catalog.db").as_posix()}"\n'
        f'sync_db_path = "{(tmp_path / "sync.db").as_posix()}"\n'
        f'[sync]\naudit_retention_days = 1\n'
        f'[server]\nport = 9100\n',
        encoding="utf-8")
    yield path
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_hive_sync_handler", False)]:
        root.removeHandler(handler)
        handler.close()

#
########################################################################################################################
#
# Tests:


def test_parse_args_defaults_to_no_command():
    args = run.parse_args([])
    assert args.command is None
    assert args.config is None


def test_serve_uses_configured_port_unless_overridden(config_path, mocker):
    mock_run = mocker.patch("run.uvicorn.run")
    assert run.main(["--config", str(config_path), "serve"]) == 0
    assert mock_run.call_args.kwargs["port"] == 9100
    assert mock_run.call_args.kwargs["log_config"] is None

    run.main(["--config", str(config_path), "serve", "--port", "9200", "--host", "0.0.0.0"])
    assert mock_run.call_args.kwargs == {"host": "0.0.0.0", "port": 9200, "log_config": None}


def test_prune_command_applies_audit_retention(config_path, tmp_path):
    state_db = SyncStateDatabase(tmp_path / "sync.db")
    old = utc_now().replace(year=2020)
    state_db.record_change(user_id="u", business_id="b", device_id="d", entity_type="product", entity_id="p-1",
                           operation="update", client_timestamp=old, status="completed", processed_at=old)
    state_db.close_connection()

    assert run.main(["--config", str(config_path), "prune"]) == 0

    state_db = SyncStateDatabase(tmp_path / "sync.db")
    assert state_db.execute_query("SELECT COUNT(*) AS n FROM sync_queue").fetchone()["n"] == 0
    state_db.close_connection()
