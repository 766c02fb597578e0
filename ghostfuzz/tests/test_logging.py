"""Tests for ghostfuzz.core.logging — formatters and setup."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from ghostfuzz.core.logging import (
    CampaignLogFilter,
    DevFormatter,
    JSONFormatter,
    campaign_scope,
    setup_logging,
)


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("ghostfuzz.test", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestFormatters:
    """JSON and dev output."""

    def test_json_fields(self):
        data = json.loads(JSONFormatter().format(_record(campaign_id="abc", run_index=3)))
        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "ghostfuzz.test"
        assert data["campaign_id"] == "abc"
        assert data["run_index"] == 3
        assert "seed" not in data

    def test_json_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "ghostfuzz.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        data = json.loads(JSONFormatter().format(record))
        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad"

    def test_dev_tag(self):
        line = DevFormatter().format(_record(campaign_id="0123456789ab", run_index=4))
        assert "[01234567#4] hello" in line

    def test_dev_without_context(self):
        line = DevFormatter().format(_record())
        assert "ghostfuzz.test: hello" in line


class TestSetup:
    """Root logger configuration."""

    def test_production_uses_json(self, restore_root):
        setup_logging("production", "WARNING")
        assert len(restore_root.handlers) == 1
        assert isinstance(restore_root.handlers[0].formatter, JSONFormatter)
        assert restore_root.level == logging.WARNING

    def test_development_uses_dev_formatter(self, restore_root):
        setup_logging("development", "debug")
        assert isinstance(restore_root.handlers[0].formatter, DevFormatter)
        assert restore_root.level == logging.DEBUG

    def test_campaign_filter(self):
        record = _record()
        assert CampaignLogFilter("cid", run_index=2).filter(record)
        assert record.campaign_id == "cid"
        assert record.run_index == 2

    def test_campaign_filter_keeps_explicit_run(self):
        record = _record(run_index=9)
        CampaignLogFilter("cid", run_index=2).filter(record)
        assert record.run_index == 9

    def test_setup_attaches_campaign_filter(self, restore_root):
        setup_logging("production")
        filters = restore_root.handlers[0].filters
        assert any(isinstance(f, CampaignLogFilter) for f in filters)


class TestCampaignScope:
    """Context-scoped campaign ids."""

    def test_scope_stamps_records(self):
        record = _record()
        with campaign_scope("cid", run_index=5):
            CampaignLogFilter().filter(record)
        assert record.campaign_id == "cid"
        assert record.run_index == 5

    def test_outside_scope_leaves_record_alone(self):
        record = _record()
        CampaignLogFilter().filter(record)
        assert not hasattr(record, "campaign_id")
        assert not hasattr(record, "run_index")

    def test_scope_is_restored_on_exit(self):
        with campaign_scope("outer"):
            with campaign_scope("inner", run_index=1):
                pass
            record = _record()
            CampaignLogFilter().filter(record)
        assert record.campaign_id == "outer"
        assert not hasattr(record, "run_index")

    def test_explicit_extra_wins(self):
        record = _record(campaign_id="explicit")
        with campaign_scope("scoped"):
            CampaignLogFilter().filter(record)
        assert record.campaign_id == "explicit"
