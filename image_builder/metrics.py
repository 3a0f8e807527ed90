from collections import Counter
from threading import Lock

from image_builder.state_machine import BuildState


BUILD_COUNTERS = (
    "builds_started_total",
    "builds_succeeded_total",
    "builds_failed_total",
    "builds_cancelled_total",
    "steps_halted_total",
    "remote_deploy_failures_total",
    "cleanup_errors_total",
)

FINISHED_COUNTERS = {
    BuildState.SUCCEEDED: "builds_succeeded_total",
    BuildState.FAILED: "builds_failed_total",
    BuildState.CANCELLED: "builds_cancelled_total",
}


class Metrics:
    """Process-local build counters, plus halts broken down by step name."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter(dict.fromkeys(BUILD_COUNTERS, 0))
        self._halts_by_step: Counter[str] = Counter()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += amount

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters[key]

    def build_finished(self, state: BuildState) -> None:
        self.inc(FINISHED_COUNTERS[state])

    def step_halted(self, step: str) -> None:
        with self._lock:
            self._counters["steps_halted_total"] += 1
            self._halts_by_step[step] += 1

    def halts_by_step(self) -> dict[str, int]:
        with self._lock:
            return dict(self._halts_by_step)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)


metrics = Metrics()
