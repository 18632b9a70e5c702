"""Unit tests for the command line interface and run configuration."""

import inspect
import logging
from pathlib import Path

import pytest

from convoy import __version__
from convoy.cli import main
from convoy.config import ConnectionMode, RunConfig
from convoy.engine.errors import ConfigurationError
from convoy.logging import TRACE, configure_logging, get_level_from_verbosity


@pytest.fixture
def no_logging_setup(monkeypatch):
    monkeypatch.setattr(main, "configure_logging", lambda verbosity: None)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def write_simple_run(tmp_path: Path) -> tuple:
    inventory = tmp_path / "inventory"
    (inventory / "groups").mkdir(parents=True)
    (inventory / "groups" / "web").write_text("hosts: [web1]\n")
    playbook = tmp_path / "site.yml"
    playbook.write_text("- groups: [web]\n  tasks:\n    - echo:\n        msg: hello\n")
    return playbook, inventory


class TestParser:
    """Tests for argument parsing."""

    def test_cli_package_exposes_main_module(self):
        assert inspect.ismodule(main)
        assert callable(main.main)

    def test_prog_and_version(self):
        parser = main.create_parser()
        assert parser.prog == "convoy"
        assert __version__ in main.get_version_string()

    def test_mode_is_required(self, capsys):
        with pytest.raises(SystemExit):
            main.create_parser().parse_args([])

    def test_check_modes(self):
        assert main.MODES["check-ssh"] == (ConnectionMode.SSH, True)
        assert main.MODES["check-local"] == (ConnectionMode.LOCAL, True)
        assert main.MODES["simulate"] == (ConnectionMode.SIMULATE, False)

    def test_build_config(self):
        parsed = main.create_parser().parse_args([
            "check-ssh", "-p", "a.yml", "-p", "b.yml", "-i", "inv",
            "--limit-groups", "web, db", "--tags", "deploy", "--threads", "4",
            "--async", "-e", "env=prod", "--roles", "extra_roles",
        ])
        config = main.build_config(parsed)

        assert config.mode == ConnectionMode.SSH
        assert config.check_mode is True
        assert config.async_mode is True
        assert config.playbook_paths == [Path("a.yml"), Path("b.yml")]
        assert config.limit_groups == ["web", "db"]
        assert config.tags == ["deploy"]
        assert config.threads == 4
        assert config.extra_vars == {"env": "prod"}
        assert config.role_paths[-1] == Path("extra_roles")

    def test_split_list(self):
        assert main.split_list(None) == []
        assert main.split_list("a,,b , c") == ["a", "b", "c"]


class TestExtraVars:
    """Tests for -e parsing."""

    def test_key_value_types(self):
        result = main.parse_extra_vars(["port=8080", "debug=true", "name=web", "empty="])
        assert result == {"port": 8080, "debug": True, "name": "web", "empty": ""}

    def test_inline_mapping(self):
        assert main.parse_extra_vars(["{region: lon, replicas: 3}"]) == {"region": "lon", "replicas": 3}

    def test_file(self, tmp_path: Path):
        path = tmp_path / "vars.yml"
        path.write_text("owner: ops\nports: [80, 443]\n")
        assert main.parse_extra_vars([f"@{path}"]) == {"owner": "ops", "ports": [80, 443]}

    def test_later_values_win(self):
        assert main.parse_extra_vars(["a=1", "a=2"]) == {"a": 2}

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="extra vars file not found"):
            main.parse_extra_vars([f"@{tmp_path / 'missing.yml'}"])

    def test_file_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "vars.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            main.parse_extra_vars([f"@{path}"])

    def test_list_is_rejected(self):
        with pytest.raises(ConfigurationError, match="key=value, @file or a mapping"):
            main.parse_extra_vars(["[1, 2]"])

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="invalid extra var"):
            main.parse_extra_vars(["=value"])


class TestRunConfig:
    """Tests for RunConfig validation."""

    def test_valid_local(self):
        RunConfig(playbook_paths=[Path("site.yml")], mode=ConnectionMode.LOCAL).validate()

    @pytest.mark.parametrize("overrides,message", [
        ({"playbook_paths": []}, "no playbook paths specified"),
        ({"inventory_paths": []}, "--inventory is required in ssh mode"),
        ({"threads": 0}, "--threads must be at least 1"),
        ({"batch_size": 0}, "--batch-size must be at least 1"),
        ({"ssh_port": 70000}, "--port out of range"),
        ({"mode": ConnectionMode.CHROOT}, "--chroot-root is required in chroot mode"),
    ])
    def test_invalid(self, overrides, message):
        values = {"playbook_paths": [Path("site.yml")], "inventory_paths": [Path("inv")]}
        values.update(overrides)
        with pytest.raises(ConfigurationError, match=message):
            RunConfig(**values).validate()


class TestMain:
    """Tests for the main entrypoint."""

    def test_config_error_exits_3(self, capsys, no_logging_setup):
        assert main.main(["ssh", "-p", "site.yml"]) == 3
        assert "--inventory is required" in capsys.readouterr().err

    def test_simulate_run(self, tmp_path: Path, capsys, no_logging_setup):
        playbook, inventory = write_simple_run(tmp_path)

        result = main.main(["simulate", "-p", str(playbook), "-i", str(inventory)])

        assert result == 0
        out = capsys.readouterr().out
        assert "PLAY RECAP" in out
        assert "web1" in out

    def test_parse_error_exits_3(self, tmp_path: Path, capsys, no_logging_setup):
        playbook, inventory = write_simple_run(tmp_path)
        playbook.write_text("- groups: [web]\n  tasks:\n    - bogus: {}\n")

        assert main.main(["simulate", "-p", str(playbook), "-i", str(inventory)]) == 3
        assert "unknown module 'bogus'" in capsys.readouterr().err


class TestLogging:
    """Tests for log level setup."""

    @pytest.mark.parametrize("verbosity,level", [
        (0, logging.WARNING),
        (1, logging.INFO),
        (2, logging.DEBUG),
        (3, TRACE),
        (9, TRACE),
        (-1, logging.WARNING),
    ])
    def test_levels(self, verbosity, level):
        assert get_level_from_verbosity(verbosity) == level

    def test_configure_logging(self, tmp_path: Path, restore_root_logger):
        log_file = tmp_path / "logs" / "convoy.log"

        configure_logging(verbosity=1, log_file=log_file)
        logging.getLogger("convoy.test").info("hello from test")

        assert restore_root_logger.level == logging.INFO
        assert len(restore_root_logger.handlers) == 2
        assert logging.getLogger("asyncssh").level == logging.WARNING
        for handler in restore_root_logger.handlers:
            handler.flush()
        assert "hello from test" in log_file.read_text()
