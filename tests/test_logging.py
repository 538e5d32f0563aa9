"""Tests for the PprintLogger wrapper and logger helpers.

This module verifies:
- Structured records (dicts, lists) are pretty-printed by default
- pprint=False falls back to str()
- Pydantic models are dumped as indented JSON
- Records below the logger's level are never formatted
- Caller locations point at the calling code, not the wrapper
- setup_logging names loggers after the caller and never duplicates handlers
"""

import logging
from io import StringIO

from pydantic import BaseModel

from storygraph.logging import PprintLogger, get_logger, setup_logging


def _capture(name: str, fmt: str = "%(levelname)s - %(message)s") -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)
    return logger, stream


class TestPprintLogger:
    """Tests for PprintLogger formatting and delegation."""

    def test_pprint_formats_dict(self) -> None:
        logger, stream = _capture("test.dict")
        PprintLogger(logger).info({"msg": "Stage 2 complete", "document_id": "doc-1", "extracted": 12})

        output = stream.getvalue()
        assert "Stage 2 complete" in output
        assert "'document_id': 'doc-1'" in output
        assert "{" in output

    def test_dict_keys_keep_insertion_order(self) -> None:
        """Records read top to bottom in the order they were built."""
        logger, stream = _capture("test.order")
        PprintLogger(logger).info({"zeta": 1, "alpha": 2})

        output = stream.getvalue()
        assert output.index("zeta") < output.index("alpha")

    def test_pprint_false_uses_str(self) -> None:
        logger, stream = _capture("test.str")
        record = {"key": "value"}
        PprintLogger(logger).info(record, pprint=False)

        assert str(record) in stream.getvalue()

    def test_simple_string_passes_through(self) -> None:
        logger, stream = _capture("test.plain")
        PprintLogger(logger).info("Simple message")

        assert "INFO - Simple message" in stream.getvalue()

    def test_percent_args_still_work(self) -> None:
        logger, stream = _capture("test.args")
        PprintLogger(logger).warning("Skipping %s", "storygraph.toml")

        assert "Skipping storygraph.toml" in stream.getvalue()

    def test_all_log_levels_support_pprint(self) -> None:
        logger, stream = _capture("test.levels")
        pprint_logger = PprintLogger(logger)
        record = {"level": "test"}

        pprint_logger.debug(record)
        pprint_logger.info(record)
        pprint_logger.warning(record)
        pprint_logger.error(record)
        pprint_logger.critical(record)

        output = stream.getvalue()
        for level in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            assert level in output
        assert "'level': 'test'" in output

    def test_exception_logging(self) -> None:
        logger, stream = _capture("test.exception")
        try:
            raise ValueError("Test exception")
        except ValueError:
            PprintLogger(logger).exception({"msg": "Stage failed"})

        output = stream.getvalue()
        assert "Stage failed" in output
        assert "ValueError: Test exception" in output

    def test_disabled_level_skips_formatting(self) -> None:
        """A record below the logger's level is never rendered."""

        class Exploding:
            def __repr__(self) -> str:
                raise AssertionError("should not be formatted")

        logger, stream = _capture("test.disabled")
        logger.setLevel(logging.WARNING)
        PprintLogger(logger).debug([Exploding()])

        assert stream.getvalue() == ""

    def test_caller_location_is_reported(self) -> None:
        """pathname and lineno point at this test, not at the wrapper."""
        logger, stream = _capture("test.location", fmt="%(filename)s:%(funcName)s")
        PprintLogger(logger).info({"where": "here"})

        assert stream.getvalue().strip() == "test_logging.py:test_caller_location_is_reported"

    def test_delegates_to_underlying_logger(self) -> None:
        logger = logging.getLogger("test.delegate")
        pprint_logger = PprintLogger(logger)

        pprint_logger.setLevel(logging.WARNING)
        assert logger.level == logging.WARNING
        assert pprint_logger.handlers == logger.handlers
        assert pprint_logger.name == "test.delegate"

    def test_pydantic_model_uses_model_dump_json(self) -> None:
        class StageReport(BaseModel):
            stage: int
            label: str
            counts: dict[str, int]

        logger, stream = _capture("test.model")
        PprintLogger(logger).info(StageReport(stage=2, label="Entity extraction", counts={"entities": 5}))

        output = stream.getvalue()
        assert '"label": "Entity extraction"' in output
        assert '"entities": 5' in output

    def test_pydantic_model_with_pprint_false(self) -> None:
        class StageReport(BaseModel):
            label: str

        logger, stream = _capture("test.model_str")
        PprintLogger(logger).info(StageReport(label="Segmentation"), pprint=False)

        output = stream.getvalue()
        assert "label='Segmentation'" in output


class TestGetLogger:
    """Tests for the module-level get_logger helper."""

    def test_wraps_named_logger(self) -> None:
        logger = get_logger("storygraph.pipeline.orchestrator")

        assert isinstance(logger, PprintLogger)
        assert logger._logger is logging.getLogger("storygraph.pipeline.orchestrator")  # pylint: disable=protected-access


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_returns_pprint_logger(self) -> None:
        assert isinstance(setup_logging(name="test.setup"), PprintLogger)

    def test_setup_logging_sets_level(self) -> None:
        logger = setup_logging(level=logging.DEBUG, name="test.setup_level")

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_setup_logging_uses_caller_name(self) -> None:
        def my_pipeline_script() -> PprintLogger:
            return setup_logging()

        assert my_pipeline_script().name == "my_pipeline_script"

    def test_setup_logging_does_not_duplicate_handlers(self) -> None:
        def run_twice() -> tuple[PprintLogger, PprintLogger]:
            return setup_logging(), setup_logging()

        first, second = run_twice()
        assert first._logger is second._logger  # pylint: disable=protected-access
        assert len(first.handlers) == 1
