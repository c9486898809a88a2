"""Unit tests for ReconciliationScheduler."""

import json
import os
import time

import pytest

from reconciliation.engine import ReconciliationResult
from reconciliation.scheduler import (
    INTERVAL_SECONDS,
    OUTCOME_FAILED,
    OUTCOME_OK,
    ReconciliationScheduler,
    ReconciliationState,
)
from validation.errors import SnapshotError


# =============================================================================
# ReconciliationState Defaults
# =============================================================================

def test_default_state():
    """Fresh ReconciliationState has never run."""
    state = ReconciliationState()
    assert state.last_run_time == 0.0
    assert state.last_outcome == ""
    assert state.last_counts == {}
    assert state.run_count == 0
    assert state.failure_count == 0


# =============================================================================
# State Persistence
# =============================================================================

def test_load_state_no_file(tmp_path):
    """load_state() returns defaults when no file exists."""
    state = ReconciliationScheduler(str(tmp_path)).load_state()
    assert state == ReconciliationState()


def test_save_and_load_state(tmp_path):
    """Save state, load it back, verify all fields match."""
    scheduler = ReconciliationScheduler(str(tmp_path))
    original = ReconciliationState(
        last_run_time=1234567890.5,
        last_outcome=OUTCOME_OK,
        last_counts={"created": 3, "updated": 1},
        last_success_time=1234567890.5,
        run_count=3,
        failure_count=1,
    )

    scheduler.save_state(original)

    assert scheduler.load_state() == original


def test_save_state_creates_data_dir(tmp_path):
    data_dir = tmp_path / "nested" / "data"
    scheduler = ReconciliationScheduler(str(data_dir))
    scheduler.save_state(ReconciliationState(run_count=1))
    assert os.path.exists(data_dir / ReconciliationScheduler.STATE_FILE)
    assert not os.path.exists(str(data_dir / ReconciliationScheduler.STATE_FILE) + ".tmp")


def test_load_state_corrupt_json(tmp_path):
    """Corrupt JSON falls back to defaults."""
    scheduler = ReconciliationScheduler(str(tmp_path))
    with open(scheduler.state_path, "w") as f:
        f.write("{not json")
    assert scheduler.load_state() == ReconciliationState()


def test_load_state_unknown_keys(tmp_path):
    """A ledger with unexpected keys falls back to defaults."""
    scheduler = ReconciliationScheduler(str(tmp_path))
    with open(scheduler.state_path, "w") as f:
        json.dump({"last_run_time": 5.0, "last_gaps_found": 2}, f)
    assert scheduler.load_state() == ReconciliationState()


# =============================================================================
# is_due
# =============================================================================

def test_never_is_never_due(tmp_path):
    assert ReconciliationScheduler(str(tmp_path)).is_due("never") is False


def test_unknown_interval_is_never_due(tmp_path):
    assert ReconciliationScheduler(str(tmp_path)).is_due("fortnightly") is False


@pytest.mark.parametrize("interval", ["hourly", "daily", "weekly"])
def test_first_run_is_due(tmp_path, interval):
    assert ReconciliationScheduler(str(tmp_path)).is_due(interval) is True


@pytest.mark.parametrize("interval", ["hourly", "daily", "weekly"])
def test_due_after_interval(tmp_path, interval):
    scheduler = ReconciliationScheduler(str(tmp_path))
    last = 1_000_000.0
    scheduler.save_state(ReconciliationState(last_run_time=last))

    assert scheduler.is_due(interval, now=last + INTERVAL_SECONDS[interval] - 1) is False
    assert scheduler.is_due(interval, now=last + INTERVAL_SECONDS[interval]) is True


def test_failed_run_also_resets_interval(tmp_path):
    scheduler = ReconciliationScheduler(str(tmp_path))
    scheduler.record_failure(SnapshotError("portal down"), now=1_000_000.0)
    assert scheduler.is_due("hourly", now=1_000_000.0 + 60) is False


# =============================================================================
# record_run / record_failure
# =============================================================================

def test_record_run(tmp_path):
    scheduler = ReconciliationScheduler(str(tmp_path))
    result = ReconciliationResult(snapshot_size=12, created=2, updated=1, errors=["1002: locked"])

    state = scheduler.record_run(result, now=1_000_000.0)

    assert state.last_outcome == OUTCOME_OK
    assert state.last_run_time == 1_000_000.0
    assert state.last_success_time == 1_000_000.0
    assert state.last_counts["created"] == 2
    assert state.last_counts["snapshot_size"] == 12
    assert state.run_count == 1
    assert scheduler.load_state() == state


def test_record_run_defaults_to_now(tmp_path):
    scheduler = ReconciliationScheduler(str(tmp_path))
    before = time.time()
    state = scheduler.record_run(ReconciliationResult())
    assert state.last_run_time >= before


def test_record_failure_keeps_previous_counts(tmp_path):
    scheduler = ReconciliationScheduler(str(tmp_path))
    scheduler.record_run(ReconciliationResult(created=5), now=1_000_000.0)

    state = scheduler.record_failure(SnapshotError("listing timed out"), now=1_003_600.0)

    assert state.last_outcome == OUTCOME_FAILED
    assert state.last_error == "SnapshotError: listing timed out"
    assert state.last_counts["created"] == 5
    assert state.last_success_time == 1_000_000.0
    assert state.run_count == 2
    assert state.failure_count == 1


def test_success_clears_last_error(tmp_path):
    scheduler = ReconciliationScheduler(str(tmp_path))
    scheduler.record_failure(SnapshotError("x"), now=1.0)
    state = scheduler.record_run(ReconciliationResult(), now=2.0)
    assert state.last_error == ""
    assert state.failure_count == 1
