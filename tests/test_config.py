"""Tests for configuration loading and upgrade options."""
import io
import logging

import pytest

from ng_upgrade.config import (
    CheckpointFrequency,
    Config,
    RollbackPolicy,
    Strategy,
    UpgradeOptions,
    ValidationLevel,
    get_default_config_path,
    load_config,
)
from ng_upgrade.exceptions import ConfigurationError
from ng_upgrade.logging_config import ColoredFormatter, get_logger, setup_logging
from ng_upgrade.orchestration.orchestrator import UpgradeOrchestrator


class TestLoadConfig:
    """Test YAML configuration loading."""

    def test_defaults_without_file(self):
        """Test that defaults apply when no file is given."""
        config = load_config(None)
        assert isinstance(config, Config)
        assert config.planning.max_span == 8
        assert config.planning.supported_versions == list(range(12, 21))
        assert config.checkpoints.storage_dir == ".ng-upgrade"
        assert "node_modules" in config.checkpoints.exclude_patterns

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that a missing file is not an error."""
        config = load_config(str(tmp_path / "absent.yaml"))
        assert config.validation.build_command == "npm run build"

    def test_overrides(self, tmp_path):
        """Test that sections override defaults and timeouts merge."""
        path = tmp_path / "ng_upgrade.yaml"
        path.write_text(
            "planning:\n"
            "  max_span: 4\n"
            "checkpoints:\n"
            "  retention: 2\n"
            "validation:\n"
            "  build_command: ng build\n"
            "  timeouts:\n"
            "    build: 30\n"
        )
        config = load_config(str(path))
        assert config.planning.max_span == 4
        assert config.checkpoints.retention == 2
        assert config.validation.build_command == "ng build"
        assert config.validation.timeouts["build"] == 30
        assert config.validation.timeouts["test"] == 600.0

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        """Test that unknown sections and keys only warn."""
        path = tmp_path / "ng_upgrade.yaml"
        path.write_text("bogus:\n  a: 1\nplanning:\n  nope: 2\n")
        with caplog.at_level(logging.WARNING, logger="ng_upgrade"):
            config = load_config(str(path))
        assert config.planning.max_span == 8
        assert "bogus" in caplog.text
        assert "planning.nope" in caplog.text

    def test_invalid_yaml(self, tmp_path):
        """Test that malformed YAML raises ConfigurationError."""
        path = tmp_path / "bad.yaml"
        path.write_text("planning: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_invalid_values(self, tmp_path):
        """Test that out-of-range values are rejected."""
        path = tmp_path / "bad.yaml"
        path.write_text("planning:\n  max_span: 0\n")
        with pytest.raises(ConfigurationError):
            load_config(str(path))

    def test_default_config_path(self, tmp_path, monkeypatch):
        """Test that the working directory is searched for a config file."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        assert get_default_config_path() is None
        (tmp_path / "ng_upgrade.yml").write_text("{}\n")
        assert get_default_config_path() == "ng_upgrade.yml"


class TestUpgradeOptions:
    """Test the immutable options value."""

    def test_from_dict(self):
        """Test that enum values are coerced."""
        options = UpgradeOptions.from_dict({
            "target_version": 17,
            "strategy": "conservative",
            "checkpoint_frequency": "every-step",
            "validation_level": "comprehensive",
            "rollback_policy": "auto-on-failure",
        })
        assert options.target_version == "17"
        assert options.strategy == Strategy.CONSERVATIVE
        assert options.checkpoint_frequency == CheckpointFrequency.EVERY_STEP
        assert options.validation_level == ValidationLevel.COMPREHENSIVE
        assert options.rollback_policy == RollbackPolicy.AUTOMATIC

    def test_from_dict_rejects_unknown_value(self):
        """Test that invalid enum values raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="strategy"):
            UpgradeOptions.from_dict({"target_version": "17", "strategy": "reckless"})

    def test_from_dict_requires_target(self):
        """Test that the target version is mandatory."""
        with pytest.raises(ConfigurationError):
            UpgradeOptions.from_dict({"strategy": "balanced"})

    def test_frozen(self):
        """Test that options cannot be mutated."""
        options = UpgradeOptions(target_version="17")
        with pytest.raises(Exception):
            options.target_version = "18"


@pytest.fixture
def package_logger():
    """Package logger restored to its handlers and level after the test."""
    logger = logging.getLogger("ng_upgrade")
    saved_handlers, saved_level = list(logger.handlers), logger.level
    yield logger
    for handler in logger.handlers:
        if handler not in saved_handlers:
            handler.close()
    logger.handlers[:] = saved_handlers
    logger.setLevel(saved_level)


class TestLogging:
    """Test logging setup."""

    def test_setup_logging_with_file(self, tmp_path, package_logger):
        """Test that a file handler receives debug records."""
        log_file = tmp_path / "upgrade.log"
        logger = setup_logging("INFO", str(log_file), stream=io.StringIO())
        get_logger("tests").debug("debug detail")
        for handler in logger.handlers:
            handler.flush()
        assert "debug detail" in log_file.read_text()
        assert logger.level == logging.DEBUG

    def test_console_follows_level(self, package_logger):
        stream = io.StringIO()
        setup_logging("WARNING", stream=stream)
        get_logger("tests").info("quiet")
        get_logger("tests").warning("loud")
        assert stream.getvalue() == "WARNING - loud\n"

    def test_repeat_setup_replaces_own_handlers_only(self, package_logger):
        """Test that calling setup twice does not duplicate output or drop foreign handlers."""
        foreign = logging.NullHandler()
        package_logger.addHandler(foreign)
        stream = io.StringIO()

        setup_logging("INFO", stream=io.StringIO())
        setup_logging("INFO", stream=stream)
        get_logger("tests").info("once")

        assert stream.getvalue().count("once") == 1
        assert foreign in package_logger.handlers
        assert len(package_logger.handlers) == 2

    def test_verbose_format(self, package_logger):
        stream = io.StringIO()
        setup_logging("DEBUG", verbose=True, stream=stream)
        get_logger("tests").debug("details")
        assert "ng_upgrade.tests - DEBUG - test_config.py:" in stream.getvalue()

    def test_invalid_level(self, package_logger):
        with pytest.raises(ConfigurationError):
            setup_logging("LOUD")

    def test_colored_formatter_leaves_record_untouched(self):
        """Test that coloring does not leak into the shared record."""
        record = logging.LogRecord("ng_upgrade", logging.WARNING, __file__, 1, "careful", None, None)
        output = ColoredFormatter("%(levelname)s - %(message)s").format(record)
        assert "\033[33m" in output
        assert record.levelname == "WARNING"

    def test_colors_disabled(self):
        record = logging.LogRecord("ng_upgrade", logging.ERROR, __file__, 1, "broken", None, None)
        output = ColoredFormatter("%(levelname)s - %(message)s", use_colors=False).format(record)
        assert output == "ERROR - broken"

    def test_get_logger_namespacing(self):
        """Test that component loggers live under the package logger."""
        assert get_logger("planner").name == "ng_upgrade.planner"

    def test_orchestrator_from_config(self, tmp_path, angular_project, fake_runner, package_logger):
        """Test that the logging section of the config file is applied."""
        log_file = tmp_path / "run.log"
        config_file = tmp_path / "ng_upgrade.yaml"
        config_file.write_text(
            "logging:\n"
            "  level: WARNING\n"
            f"  log_file: {log_file}\n"
            "checkpoints:\n"
            "  retention: 3\n"
        )

        orchestrator = UpgradeOrchestrator.from_config(
            str(angular_project), str(config_file), command_runner=fake_runner
        )

        assert orchestrator.config.checkpoints.retention == 3
        assert orchestrator.command_runner is fake_runner
        file_handlers = [h for h in package_logger.handlers if isinstance(h, logging.FileHandler)]
        assert [h.baseFilename for h in file_handlers] == [str(log_file)]
        console = [h for h in package_logger.handlers if type(h) is logging.StreamHandler]
        assert console[0].level == logging.WARNING

    def test_from_config_without_logging_setup(self, tmp_path, angular_project, fake_runner, package_logger):
        config_file = tmp_path / "ng_upgrade.yaml"
        config_file.write_text("logging:\n  level: DEBUG\n")
        before = list(package_logger.handlers)

        orchestrator = UpgradeOrchestrator.from_config(
            str(angular_project), str(config_file), configure_logging=False, command_runner=fake_runner
        )

        assert orchestrator.config.logging.level == "DEBUG"
        assert package_logger.handlers == before

    def test_from_config_rejects_bad_level(self, tmp_path, angular_project, fake_runner, package_logger):
        config_file = tmp_path / "ng_upgrade.yaml"
        config_file.write_text("logging:\n  level: chatty\n")
        with pytest.raises(ConfigurationError):
            UpgradeOrchestrator.from_config(str(angular_project), str(config_file), command_runner=fake_runner)
