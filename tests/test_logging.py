from __future__ import annotations

import asyncio
import json
import logging

import pytest
import structlog

from conductor.core.logging import configure_logging, get_logger, request_context


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def test_request_context_binds_and_clears() -> None:
    with request_context(conversation_id="conv-9", stage="planning"):
        assert structlog.contextvars.get_contextvars() == {"conversation_id": "conv-9", "stage": "planning"}

    assert structlog.contextvars.get_contextvars() == {}


@pytest.mark.asyncio
async def test_request_context_reaches_spawned_tasks() -> None:
    async def _bound() -> dict[str, object]:
        return structlog.contextvars.get_contextvars()

    with request_context(conversation_id="conv-10"):
        seen = await asyncio.ensure_future(_bound())

    assert seen == {"conversation_id": "conv-10"}


def test_json_lines_carry_bound_fields(caplog: pytest.LogCaptureFixture) -> None:
    configure_logging("INFO")
    logger = get_logger(name="conductor.tests")

    with caplog.at_level(logging.INFO, logger="conductor.tests"):
        with request_context(conversation_id="conv-11"):
            logger.info("plan_created", mode="full")

    event = json.loads(caplog.records[-1].getMessage())
    assert event["event"] == "plan_created"
    assert event["conversation_id"] == "conv-11"
    assert event["level"] == "info"
    assert "timestamp" in event


def test_console_format_renders_plain_text(caplog: pytest.LogCaptureFixture) -> None:
    configure_logging("INFO", log_format="console")
    logger = get_logger(name="conductor.tests")

    with caplog.at_level(logging.INFO, logger="conductor.tests"):
        logger.info("plan_created", mode="full")

    message = caplog.records[-1].getMessage()
    assert "plan_created" in message
    with pytest.raises(json.JSONDecodeError):
        json.loads(message)
