"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
from pathlib import Path

from tests._engine_factory import blog_catalog
from trellis.engine import Engine
from trellis.logging import setup_logging


def _flush(logger: logging.Logger) -> None:
    for handler in logger.handlers:
        handler.flush()


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("test_message", extra={"component": "test", "kind": "Post"})
        _flush(logger)
        log_path = tmp_path / "trellis.log"
        assert log_path.exists()
        record = json.loads(log_path.read_text().strip())
        assert record["msg"] == "test_message"
        assert record["component"] == "test"
        assert record["kind"] == "Post"
        assert record["logger"] == "trellis"

    def test_json_format(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("formatted", extra={"trace_id": "abc", "duration_ms": 42.5})
        _flush(logger)
        record = json.loads((tmp_path / "trellis.log").read_text().strip().split("\n")[-1])
        assert record["trace_id"] == "abc"
        assert record["duration_ms"] == 42.5

    def test_exception_recorded(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        try:
            raise ValueError("kaboom")
        except ValueError:
            logger.exception("failed")
        _flush(logger)
        record = json.loads((tmp_path / "trellis.log").read_text().strip().split("\n")[-1])
        assert record["exception"] == "kaboom"
        assert record["level"] == "ERROR"

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_new_directory_replaces_handler(self, tmp_path: Path) -> None:
        first, second = tmp_path / "one", tmp_path / "two"
        first.mkdir()
        second.mkdir()
        setup_logging(first)
        logger = setup_logging(second)
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.handlers.RotatingFileHandler)
        assert logger.handlers[0].baseFilename == os.path.abspath(str(second / "trellis.log"))

    def test_no_duplicate_handlers_under_concurrency(self, tmp_path: Path) -> None:
        """Concurrent setup_logging calls must not produce duplicate handlers."""
        import threading

        results: list[logging.Logger] = []
        barrier = threading.Barrier(4)

        def call_setup() -> None:
            barrier.wait()
            results.append(setup_logging(tmp_path))

        threads = [threading.Thread(target=call_setup) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4
        assert all(r is results[0] for r in results)
        assert len(logging.getLogger("trellis").handlers) == 1

    def test_engine_run_written_with_trace_id(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        Engine(blog_catalog(), default_strategy="memory").run([("Post", "example_post")], trace_id="t-1")
        _flush(logger)
        lines = [json.loads(line) for line in (tmp_path / "trellis.log").read_text().splitlines()]
        finished = [line for line in lines if line["msg"].startswith("Run finished")]
        assert finished[0]["trace_id"] == "t-1"
        assert finished[0]["component"] == "engine"
        assert "duration_ms" in finished[0]
