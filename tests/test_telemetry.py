"""Tests for umbrella_mail_import.telemetry."""

from __future__ import annotations

from unittest.mock import patch

from umbrella_mail_import.telemetry import ImportTelemetry


class TestImportTelemetry:
    def test_counters_accumulate(self):
        telemetry = ImportTelemetry("header_stage")
        telemetry.increment("headers")
        telemetry.increment("headers", 4)
        assert telemetry.counters == {"headers": 5}

    def test_stop_unknown_timer(self):
        assert ImportTelemetry("x").stop_timer("never") == 0.0

    def test_stop_timer_records_elapsed(self):
        telemetry = ImportTelemetry("x")
        telemetry.start_timer("fetch")
        elapsed = telemetry.stop_timer("fetch")
        assert elapsed >= 0.0
        assert telemetry.timings["fetch"] == elapsed

    def test_emit_writes_one_event(self):
        telemetry = ImportTelemetry("body_stage", provider_message_id="msg-1")
        telemetry.start_timer("body")
        telemetry.increment("recipients", 2)

        with patch("umbrella_mail_import.telemetry.logger") as logger:
            telemetry.emit()

        logger.info.assert_called_once()
        args, event = logger.info.call_args
        assert args == ("import_telemetry",)
        assert event["telemetry_event"] == "body_stage"
        assert event["provider_message_id"] == "msg-1"
        assert event["counters"] == {"recipients": 2}
        assert "body" in event["timings"]
