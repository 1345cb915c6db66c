"""
Tests for scheduling settings
"""

import logging

import pytest
from pydantic import ValidationError

from ortho_scheduling.config import SchedulingSettings, get_settings, validate_environment
from ortho_scheduling.utils import logging_config


class TestSchedulingSettings:
    """Environment-driven configuration"""

    def test_defaults(self):
        settings = SchedulingSettings(_env_file=None)

        assert settings.max_occurrences_cap == 52
        assert settings.default_generation_days == 90
        assert settings.default_slot_minutes == 30

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SCHEDULING_CLINIC_TIMEZONE", "Europe/Madrid")
        monkeypatch.setenv("SCHEDULING_DEFAULT_SLOT_MINUTES", "15")

        settings = SchedulingSettings(_env_file=None)

        assert settings.clinic_timezone == "Europe/Madrid"
        assert settings.default_slot_minutes == 15

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            SchedulingSettings(_env_file=None, clinic_timezone="Mars/Olympus_Mons")

    def test_log_level_is_normalized(self):
        assert SchedulingSettings(_env_file=None, log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            SchedulingSettings(_env_file=None, log_level="chatty")

    def test_validate_environment_reports_failure(self, monkeypatch):
        get_settings.cache_clear()
        monkeypatch.setenv("SCHEDULING_MAX_INTERVAL", "0")
        try:
            assert validate_environment() is False
        finally:
            get_settings.cache_clear()


class TestLoggingConfig:
    """Log layout and level taken from settings"""

    def test_local_layout_has_timestamps(self):
        handler = logging_config.build_handler(
            SchedulingSettings(_env_file=None, log_format="local", log_level="debug"),
        )

        assert "%(asctime)s" in handler.formatter._fmt
        assert handler.level == logging.DEBUG

    def test_container_layout_leaves_timestamps_to_runtime(self):
        handler = logging_config.build_handler(SchedulingSettings(_env_file=None, log_format="CONTAINER"))

        assert "%(asctime)s" not in handler.formatter._fmt
        assert handler.formatter.datefmt is None

    def test_auto_follows_the_runtime(self, monkeypatch):
        monkeypatch.setattr(logging_config, "running_in_container", lambda: True)
        assert logging_config.resolve_format("auto") == logging_config.LOG_FORMATS["container"]

        monkeypatch.setattr(logging_config, "running_in_container", lambda: False)
        assert logging_config.resolve_format("auto") == logging_config.LOG_FORMATS["local"]

    def test_unknown_layout(self):
        with pytest.raises(ValidationError):
            SchedulingSettings(_env_file=None, log_format="xml")

    def test_existing_handlers_are_kept_unless_forced(self, monkeypatch):
        root = logging.getLogger()
        sentinel = logging.NullHandler()
        monkeypatch.setattr(root, "handlers", [sentinel])
        monkeypatch.setattr(root, "level", root.level)
        settings = SchedulingSettings(_env_file=None, log_format="local")

        logging_config.configure_logging(settings)
        assert root.handlers == [sentinel]

        logging_config.configure_logging(settings, force=True)
        assert len(root.handlers) == 1
        assert root.handlers[0] is not sentinel
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
