"""Tests for the command line entry point."""
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from unfold_store import main as main_module
from unfold_store.exceptions import ConfigurationError, SchemaError


@pytest.fixture
def quiet_logging(tmp_path, monkeypatch):
    """Keep log files out of the home directory."""
    monkeypatch.setattr(main_module.config, "log_dir", tmp_path / "logs")
    with patch.object(main_module, "configure_logging", return_value=tmp_path / "logs"):
        yield


class TestUpdateConfig:
    """Tests for applying command line overrides."""

    def test_overrides_are_applied(self, test_config, tmp_path):
        args = main_module.parse_args([
            "--app-data-dir", str(tmp_path / "data"),
            "--app-local-data-dir", str(tmp_path / "local"),
            "--channel", "nightly",
        ])
        main_module.update_config(args)
        assert test_config.app_data_dir == tmp_path / "data"
        assert test_config.app_local_data_dir == tmp_path / "local"
        assert test_config.get_database_name() == "unfold-nightly.db"

    def test_invalid_override(self, test_config):
        args = main_module.parse_args(["--channel", "   "])
        with pytest.raises(ConfigurationError):
            main_module.update_config(args)


class TestMain:
    """Tests for startup and shutdown paths."""

    def test_runs_server_on_migrated_store(self, test_config, quiet_logging, tmp_path):
        database_path = tmp_path / "cli.db"
        server = MagicMock()
        with patch.object(main_module, "UnfoldMcpServer", return_value=server) as cls:
            main_module.main(["--database-path", str(database_path)])

        assert database_path.exists()
        engine = cls.call_args.kwargs["engine"]
        assert Path(engine.url.database) == database_path
        server.run.assert_called_once()

    def test_exits_when_store_cannot_be_opened(self, test_config, quiet_logging):
        with patch.object(main_module, "init_db", side_effect=SchemaError("broken")):
            with pytest.raises(SystemExit) as exc_info:
                main_module.main([])
        assert exc_info.value.code == 1

    def test_exits_on_invalid_configuration(self, test_config, quiet_logging):
        with pytest.raises(SystemExit) as exc_info:
            main_module.main(["--channel", " "])
        assert exc_info.value.code == 2
