"""Tests for swarm_watchdog.logging_config."""

import logging

import pytest

from swarm_watchdog.logging_config import (
    COMPACT_FORMAT,
    DEFAULT_FORMAT,
    DETAILED_FORMAT,
    FORMAT_STYLES,
    STRUCTURED_FORMAT,
    configure_third_party_loggers,
    setup_logging,
)


class TestSetupLogging:
    """Test setup_logging function."""

    def test_returns_named_logger_at_info(self):
        logger = setup_logging("sw_test_basic")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "sw_test_basic"
        assert logger.level == logging.INFO

    def test_level_as_string(self):
        logger = setup_logging("sw_test_level", level="DEBUG")
        assert logger.level == logging.DEBUG

    def test_no_duplicate_handlers(self):
        logger = setup_logging("sw_test_idem")
        count = len(logger.handlers)
        assert setup_logging("sw_test_idem") is logger
        assert len(logger.handlers) == count

    def test_log_file_appends(self, tmp_path):
        log_file = tmp_path / "watchdog.log"
        log_file.write_text("earlier run\n")
        logger = setup_logging("sw_test_file", log_file=log_file, console=False)
        logger.info("Health check: none (running)")
        for h in logger.handlers:
            h.flush()

        content = log_file.read_text()
        assert content.startswith("earlier run\n")
        assert "[INFO] sw_test_file: Health check: none (running)" in content

    def test_adding_file_later_keeps_single_console_handler(self, tmp_path):
        logger = setup_logging("sw_test_later")
        setup_logging("sw_test_later", log_file=tmp_path / "later.log")
        console = [h for h in logger.handlers if type(h) is logging.StreamHandler]
        files = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(console) == 1
        assert len(files) == 1

    def test_propagate(self):
        assert setup_logging("sw_test_prop").propagate is False
        assert setup_logging("sw_test_prop2", propagate=True).propagate is True

    @pytest.mark.parametrize("style", ["default", "compact", "detailed", "structured", "nonexistent"])
    def test_format_styles(self, style):
        assert setup_logging(f"sw_test_fmt_{style}", format_style=style) is not None

    def test_compact_style_in_file(self, tmp_path):
        log_file = tmp_path / "compact.log"
        logger = setup_logging("sw_test_compact_file", log_file=log_file, console=False, format_style="compact")
        logger.warning("Skipping restart")
        for h in logger.handlers:
            h.flush()

        line = log_file.read_text().strip()
        assert line.endswith(" W Skipping restart")
        assert "sw_test_compact_file" not in line


class TestHelpers:
    def test_quiets_requests_stack(self):
        logging.getLogger("urllib3").setLevel(logging.DEBUG)
        configure_third_party_loggers()
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_verbose_packages_left_alone(self):
        logging.getLogger("requests").setLevel(logging.INFO)
        configure_third_party_loggers(verbose_packages=["requests"])
        assert logging.getLogger("requests").level == logging.INFO


class TestFormatConstants:
    def test_styles_listed(self):
        assert FORMAT_STYLES == ("default", "compact", "detailed", "structured")

    def test_default_fields(self):
        for field in ("%(asctime)s", "%(levelname)s", "%(name)s", "%(message)s"):
            assert field in DEFAULT_FORMAT

    def test_compact_is_shorter(self):
        assert len(COMPACT_FORMAT) < len(DEFAULT_FORMAT)

    def test_detailed_has_location(self):
        assert "%(filename)s" in DETAILED_FORMAT
        assert "%(lineno)d" in DETAILED_FORMAT

    def test_structured_is_json_like(self):
        assert STRUCTURED_FORMAT.startswith("{")
        assert STRUCTURED_FORMAT.endswith("}")
