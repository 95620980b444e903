"""Tests for duplicate signal detection."""

from __future__ import annotations

from unittest.mock import MagicMock

from signalgate.session.results import CheckStatus
from signalgate.signals.duplicates import DuplicateDetector, InMemorySignalLog
from signalgate.signals.signal import Direction


class TestDuplicateDetector:
    def test_first_signal_allowed(self, make_signal) -> None:
        detector = DuplicateDetector()
        assert detector.check(make_signal()).status == CheckStatus.ALLOWED

    def test_redelivery_within_tolerance_blocked(self, make_signal) -> None:
        detector = DuplicateDetector(tolerance_s=60)
        first = make_signal(signal_id="abc")
        detector.mark_processed(first)

        result = detector.check(make_signal(timestamp=first.timestamp + 30, signal_id="def"))
        assert result.status == CheckStatus.BLOCKED
        assert "Duplicate signal detected" in result.reason
        assert "(ID: abc)" in result.reason
        assert result.details["existing_signal_id"] == "abc"

    def test_outside_tolerance_allowed(self, make_signal) -> None:
        detector = DuplicateDetector(tolerance_s=60)
        first = make_signal()
        detector.mark_processed(first)
        assert detector.check(make_signal(timestamp=first.timestamp + 61)).allowed

    def test_different_direction_or_type_allowed(self, make_signal) -> None:
        detector = DuplicateDetector()
        detector.mark_processed(make_signal())
        assert detector.check(make_signal(direction=Direction.SHORT)).status == CheckStatus.ALLOWED
        assert detector.check(make_signal(signal_type="OB")).status == CheckStatus.ALLOWED
        assert detector.check(make_signal(symbol="NQ")).status == CheckStatus.ALLOWED

    def test_check_does_not_record(self, make_signal) -> None:
        detector = DuplicateDetector()
        detector.check(make_signal())
        assert detector.check(make_signal()).status == CheckStatus.ALLOWED

    def test_lookup_failure_degrades(self, make_signal) -> None:
        log = MagicMock()
        log.find.side_effect = RuntimeError("store down")
        result = DuplicateDetector(log).check(make_signal())
        assert result.status == CheckStatus.DEGRADED
        assert result.allowed
        assert "store down" in result.reason

    def test_record_failure_is_logged_not_raised(self, make_signal) -> None:
        log = MagicMock()
        log.record.side_effect = RuntimeError("disk full")
        DuplicateDetector(log).mark_processed(make_signal())
        log.record.assert_called_once()

    def test_generated_id_when_missing(self, make_signal) -> None:
        log = InMemorySignalLog()
        detector = DuplicateDetector(log)
        detector.mark_processed(make_signal(signal_id=None))
        found = log.find("ES", "FVG_BOS", "LONG", 0, 2**40)
        assert found is not None
        assert found.signal_id.startswith("ES-")


class TestInMemorySignalLog:
    def test_bounded(self, make_signal) -> None:
        log = InMemorySignalLog(max_entries=3)
        detector = DuplicateDetector(log)
        for i in range(5):
            detector.mark_processed(make_signal(timestamp=1_000 + i * 1_000, signal_id=str(i)))
        assert len(log) == 3
        assert log.find("ES", "FVG_BOS", "LONG", 0, 1_500) is None
