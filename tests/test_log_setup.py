import logging
from logging.handlers import RotatingFileHandler

import pytest
import requests

from keeper.config import effective_settings as config
from keeper.log import LokiHandler, setup_logging


class FakeResponse:
    def __init__(self, status_code=204, text=""):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def posts(monkeypatch):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append({"url": url, "json": json, "headers": headers})
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    return sent


def test_console_handler_only(monkeypatch):
    monkeypatch.setattr(config, "LOKI_ENABLED", False)

    setup_logging(logging.WARNING, log_file="")

    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert type(handlers[0]) is logging.StreamHandler
    assert handlers[0].level == logging.WARNING


def test_file_handler(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "LOKI_ENABLED", False)
    log_file = tmp_path / "logs" / "keeper.log"

    setup_logging(log_file=str(log_file))
    logging.getLogger("keeper.test").info("hello from the supervisor")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert any(isinstance(h, RotatingFileHandler) for h in logging.getLogger().handlers)
    content = log_file.read_text()
    assert "hello from the supervisor" in content
    assert "[keeper.test:" in content


def test_loki_handler_batches_records(posts):
    handler = LokiHandler("http://loki:3100/", org_id="tenant", batch_size=2)
    try:
        logger = logging.getLogger("keeper.loki-test")
        logger.propagate = False
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

        logger.info("first")
        assert posts == []
        logger.info("second")
    finally:
        logger.removeHandler(handler)
        handler.close()

    [request] = posts
    assert request["url"] == "http://loki:3100/loki/api/v1/push"
    assert request["headers"]["X-Scope-OrgID"] == "tenant"
    streams = request["json"]["streams"]
    assert [s["values"][0][1] for s in streams] == ["first", "second"]
    assert streams[0]["stream"]["job"] == "keeper"
    assert streams[0]["stream"]["level"] == "info"


def test_loki_handler_flushes_on_close(posts):
    handler = LokiHandler("http://loki:3100")
    handler.emit(logging.LogRecord("keeper", logging.WARNING, __file__, 1, "bye", None, None))

    handler.close()

    assert len(posts) == 1
    assert "X-Scope-OrgID" not in posts[0]["headers"]


def test_setup_logging_adds_loki_handler(posts, monkeypatch):
    monkeypatch.setattr(config, "LOKI_ENABLED", True)

    setup_logging(log_file="")

    loki_handlers = [h for h in logging.getLogger().handlers if isinstance(h, LokiHandler)]
    assert len(loki_handlers) == 1
    logging.getLogger().removeHandler(loki_handlers[0])
    loki_handlers[0].close()
    assert "Grafana Loki" in posts[0]["json"]["streams"][0]["values"][0][1]
