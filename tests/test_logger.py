# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import hashlib
import hmac
import json
import logging
import os
from collections.abc import Generator
from pathlib import Path
from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider

from coreason_oidc.utils.logger import anonymize, configure_logging, logger


@pytest.fixture
def clean_logger(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Restores the default configuration after each test."""
    for name in ("COREASON_LOG_LEVEL", "COREASON_LOG_JSON", "COREASON_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    yield
    configure_logging()


def test_anonymize_is_salted_hmac() -> None:
    expected = hmac.new(b"salt", b"user-123", hashlib.sha256).hexdigest()

    assert anonymize("user-123", "salt") == expected
    assert anonymize("user-123", "other-salt") != expected
    assert "user-123" not in anonymize("user-123", "salt")


@pytest.mark.usefixtures("clean_logger")
def test_text_and_json_sinks(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_JSON": "false"}):
        configure_logging()
        logger.info("Text Log")

        captured = capsys.readouterr()
        assert "Text Log" in captured.err

    with patch.dict(os.environ, {"COREASON_LOG_JSON": "true"}):
        configure_logging()
        logger.info("JSON Log")

        captured = capsys.readouterr()
        record = json.loads(captured.out.strip().splitlines()[-1])
        assert record["record"]["message"] == "JSON Log"
        assert not captured.err


@pytest.mark.usefixtures("clean_logger")
def test_level_from_environment(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_LEVEL": "warning"}):
        configure_logging()
        logger.info("hidden")
        logger.warning("shown")

    captured = capsys.readouterr()
    assert "hidden" not in captured.err
    assert "shown" in captured.err


@pytest.mark.usefixtures("clean_logger")
def test_invalid_level_falls_back_to_info(capsys: pytest.CaptureFixture[str]) -> None:
    with patch.dict(os.environ, {"COREASON_LOG_LEVEL": "CHATTY"}):
        configure_logging()
        logger.debug("hidden")
        logger.info("shown")

    captured = capsys.readouterr()
    assert "hidden" not in captured.err
    assert "shown" in captured.err


@pytest.mark.usefixtures("clean_logger")
def test_file_sink(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "oidc.log"

    with patch.dict(os.environ, {"COREASON_LOG_FILE": str(log_file)}):
        configure_logging()
        logger.info("written to file")
        logger.complete()

    lines = log_file.read_text().strip().splitlines()
    assert json.loads(lines[-1])["record"]["message"] == "written to file"


@pytest.mark.usefixtures("clean_logger")
def test_standard_logging_is_intercepted(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging()

    logging.getLogger("httpx").info("HTTP Request: GET https://idp.example.com/jwks")

    captured = capsys.readouterr()
    assert "HTTP Request: GET https://idp.example.com/jwks" in captured.err


@pytest.mark.usefixtures("clean_logger")
def test_records_carry_span_context(capsys: pytest.CaptureFixture[str]) -> None:
    tracer = TracerProvider().get_tracer("test_tracer")

    with patch.dict(os.environ, {"COREASON_LOG_JSON": "true"}):
        configure_logging()
        logger.info("outside a span")
        with tracer.start_as_current_span("token_exchange") as span:
            logger.info("inside a span")
            span_context = span.get_span_context()

    outside, inside = (json.loads(line) for line in capsys.readouterr().out.strip().splitlines()[-2:])
    assert "trace_id" not in outside["record"]["extra"]
    assert inside["record"]["extra"]["trace_id"] == format(span_context.trace_id, "032x")
    assert inside["record"]["extra"]["span_id"] == format(span_context.span_id, "016x")
