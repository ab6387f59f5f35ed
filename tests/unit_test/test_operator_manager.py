from unittest.mock import patch

from appoperator.cli import operator_manager
from appoperator.store.memory import InMemoryResourceStore


class TestOperatorManagerCli:
    """Command line entry point"""

    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["operator_manager"])

        assert operator_manager.main() == 1
        assert "run" in capsys.readouterr().out

    def test_check_installed(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["operator_manager", "check", "--store", "memory"])

        with patch.object(operator_manager, "setup_logging"):
            assert operator_manager.main() == 0

        assert "is installed" in capsys.readouterr().out

    def test_check_missing_type_exits_nonzero(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["operator_manager", "check", "--store", "memory"])

        with patch.object(operator_manager, "setup_logging"), patch.object(
            operator_manager, "create_resource_store", return_value=InMemoryResourceStore(registered=False)
        ):
            assert operator_manager.main() == 1

    def test_run_stops_when_bootstrap_fails(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["operator_manager", "run", "--store", "memory"])

        with patch.object(operator_manager, "setup_logging"), patch.object(
            operator_manager, "create_resource_store", return_value=InMemoryResourceStore(registered=False)
        ), patch.object(operator_manager.uvicorn, "Server") as server_class:
            assert operator_manager.main() == 1

        server_class.assert_not_called()
