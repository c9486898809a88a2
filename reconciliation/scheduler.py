"""
Reconciliation scheduler and run ledger.

Runs are launched externally (cron, a systemd timer, an operator), so the
scheduler uses a check-on-invocation pattern: each invocation checks whether
a run is due based on persisted state in reconciliation_state.json, and
records the outcome of every run there.
"""

import json
import os
import time
from dataclasses import dataclass, field, asdict
from typing import Optional

from shared.log import create_logger
_, log_debug, log_info, _, _ = create_logger("Scheduler")

# Interval to seconds mapping
INTERVAL_SECONDS = {
    'never': 0,
    'hourly': 3600,
    'daily': 86400,
    'weekly': 604800,
}

OUTCOME_OK = 'ok'
OUTCOME_FAILED = 'failed'


@dataclass
class ReconciliationState:
    """Persisted run ledger."""
    last_run_time: float = 0.0          # time.time() of last run (ok or failed)
    last_outcome: str = ""              # 'ok' / 'failed'
    last_error: str = ""                # message of the last run-fatal error
    last_counts: dict = field(default_factory=dict)  # ReconciliationResult.counts()
    last_dry_run: bool = False
    last_success_time: float = 0.0
    run_count: int = 0                  # total runs
    failure_count: int = 0              # total run-fatal failures


class ReconciliationScheduler:
    """Manages reconciliation scheduling via persisted state.

    NOT a timer/thread. On each invocation, call is_due() to check if a
    reconciliation should run based on the interval and last run time.
    """

    STATE_FILE = 'reconciliation_state.json'

    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self.state_path = os.path.join(data_dir, self.STATE_FILE)

    def load_state(self) -> ReconciliationState:
        """Load the run ledger from disk."""
        try:
            if os.path.exists(self.state_path):
                with open(self.state_path, 'r') as f:
                    data = json.load(f)
                return ReconciliationState(**data)
        except (json.JSONDecodeError, TypeError, KeyError) as e:
            log_debug(f"Failed to load reconciliation state, using defaults: {e}")
        return ReconciliationState()

    def save_state(self, state: ReconciliationState) -> None:
        """Save the run ledger to disk atomically."""
        tmp_path = self.state_path + '.tmp'
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            with open(tmp_path, 'w') as f:
                json.dump(asdict(state), f, indent=2)
            os.replace(tmp_path, self.state_path)
        except OSError as e:
            log_debug(f"Failed to save reconciliation state: {e}")

    def is_due(self, interval: str, now: Optional[float] = None) -> bool:
        """Check if a reconciliation is due based on interval and last run time.

        Args:
            interval: 'never', 'hourly', 'daily', 'weekly'
            now: Current time (default: time.time()). For testing.

        Returns:
            True if reconciliation should run now.
        """
        interval_secs = INTERVAL_SECONDS.get(interval, 0)
        if interval_secs == 0:
            return False

        if now is None:
            now = time.time()

        state = self.load_state()
        elapsed = now - state.last_run_time
        return elapsed >= interval_secs

    def record_run(self, result, now: Optional[float] = None) -> ReconciliationState:
        """Record a completed reconciliation run.

        Args:
            result: ReconciliationResult from engine.run()
            now: Current time (default: time.time()). For testing.
        """
        if now is None:
            now = time.time()
        state = self.load_state()
        state.last_run_time = now
        state.last_success_time = now
        state.last_outcome = OUTCOME_OK
        state.last_error = ""
        state.last_counts = result.counts()
        state.last_dry_run = bool(result.dry_run)
        state.run_count += 1
        self.save_state(state)
        log_info(f"Recorded run #{state.run_count}")
        return state

    def record_failure(self, error: BaseException, now: Optional[float] = None) -> ReconciliationState:
        """Record a run aborted by a run-fatal error.

        Counts from the previous successful run are kept.
        """
        if now is None:
            now = time.time()
        state = self.load_state()
        state.last_run_time = now
        state.last_outcome = OUTCOME_FAILED
        state.last_error = f"{type(error).__name__}: {error}"
        state.run_count += 1
        state.failure_count += 1
        self.save_state(state)
        log_info(f"Recorded failed run #{state.run_count}")
        return state
