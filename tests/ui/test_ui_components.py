from __future__ import annotations

import io

import pytest
from rich.console import Console

from iapd_sync.ui import ProgressActivity, ProgressReporter


def test_progress_reporter_counts() -> None:
    reporter = ProgressReporter(enabled=False)
    reporter.start(total=3, label="downloads")
    reporter.advance(success=True, current="12345_900001")
    reporter.advance(failed=True)
    reporter.advance(skipped=True)
    summary = reporter.summary()
    reporter.close()
    assert summary == {"success": 1, "failed": 1, "skipped": 1}
    assert reporter.state.current == "12345_900001"


def test_progress_requires_start() -> None:
    reporter = ProgressReporter(enabled=False)
    assert reporter.summary() == {"success": 0, "failed": 0, "skipped": 0}
    with pytest.raises(RuntimeError):
        reporter.advance()


def test_progress_is_silent_off_terminal() -> None:
    buffer = io.StringIO()
    reporter = ProgressReporter(enabled=True, console=Console(file=buffer, force_terminal=False))
    reporter.start(total=2, completed=1)
    reporter.advance(success=True)
    reporter.close()
    assert reporter.enabled is False
    assert buffer.getvalue() == ""
    assert reporter.summary()["success"] == 1


def test_activity_is_noop_off_terminal() -> None:
    buffer = io.StringIO()
    activity = ProgressActivity(console=Console(file=buffer, force_terminal=False))
    activity.start("Retrieving feed")
    activity.close()
    assert buffer.getvalue() == ""
