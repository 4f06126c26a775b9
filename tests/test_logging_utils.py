from __future__ import annotations

import logging

from logging_utils import configure_logging


def test_configure_logging_adds_file_handler(monkeypatch, tmp_path):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    log_path = tmp_path / "logs" / "sim.log"

    configure_logging(logging.DEBUG, str(log_path))

    try:
        assert log_path.parent.is_dir()
        assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
    finally:
        for handler in root.handlers:
            handler.close()


def test_configure_logging_keeps_existing_handlers(monkeypatch):
    root = logging.getLogger()
    existing = logging.NullHandler()
    monkeypatch.setattr(root, "handlers", [existing])

    configure_logging()

    assert root.handlers == [existing]
