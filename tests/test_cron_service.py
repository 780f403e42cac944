import logging

from bookkeeper import processor
from bookkeeper.processor import ProcessingResult
from bookkeeper.services.cron_service import CronService
from bookkeeper.services.logging_service import configure_logging


def test_job_logs_result(monkeypatch, caplog):
    calls = []

    def fake_run(stop_event=None):
        calls.append(stop_event)
        return ProcessingResult(success=True, processed=2)

    monkeypatch.setattr(processor, "run_due_payments", fake_run)
    cron = CronService()
    with caplog.at_level(logging.INFO, logger="bookkeeper.services.cron_service"):
        cron._run_due_payments()
    assert len(calls) == 1
    assert calls[0] is not None
    assert "processed=2" in caplog.text


def test_job_failure_does_not_escape(monkeypatch, caplog):
    def boom(stop_event=None):
        raise RuntimeError("scheduler thread must survive")

    monkeypatch.setattr(processor, "run_due_payments", boom)
    with caplog.at_level(logging.ERROR, logger="bookkeeper.services.cron_service"):
        CronService()._run_due_payments()
    assert "process_due_payments failed" in caplog.text


def test_start_and_stop(monkeypatch):
    monkeypatch.setattr(processor, "run_due_payments", lambda stop_event=None: ProcessingResult(success=True))
    cron = CronService(hour=4, minute=30)
    cron.start()
    try:
        assert cron.running
        cron.start()  # duplicate start is ignored
        assert cron.running
    finally:
        cron.stop()
    assert not cron.running
    assert cron._stop_event.is_set()


def test_configure_logging_is_idempotent(tmp_path):
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        configure_logging(tmp_path)
        count = len(root.handlers)
        configure_logging(tmp_path)
        assert len(root.handlers) == count
        assert (tmp_path / "server.log").exists()
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
