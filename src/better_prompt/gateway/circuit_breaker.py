"""Per-model circuit breakers for experimental models.

One ``Circuit`` exists per model id, created lazily on first access and shared
by every request for the lifetime of the process. The ``CircuitBreakerRegistry``
is constructed once at startup and handed to whoever needs it.

States:
- CLOSED: calls pass through; outcomes feed a sliding window of the last 20.
  Whenever the window is full and its success rate is below 20% the circuit
  opens. The check runs after every outcome once the window is saturated.
- OPEN: calls are rejected until OPEN_DURATION has elapsed since opening.
  The first ``can_call`` after that moves to HALF_OPEN and admits one trial.
- HALF_OPEN: the trial outcome decides. Success closes the circuit with an
  empty window; failure reopens it with a fresh ``opened_at``.

The registry never raises and is safe to share between threads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

WINDOW_SIZE = 20
SUCCESS_RATE_THRESHOLD = 0.2
OPEN_DURATION = 5 * 60.0
MAX_CIRCUITS = 100
CLEANUP_INTERVAL = 30 * 60.0


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class Outcome:
    success: bool
    timestamp: float


@dataclass
class Circuit:
    """Mutable breaker state for one model id."""

    last_accessed_at: float
    state: CircuitState = CircuitState.CLOSED
    opened_at: float | None = None
    outcomes: deque[Outcome] = field(default_factory=lambda: deque(maxlen=WINDOW_SIZE))
    trial_in_flight: bool = False

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)


@dataclass(frozen=True)
class CircuitSnapshot:
    """Read-only view of a circuit, for health checks and tests."""

    state: CircuitState
    opened_at: float | None
    window_size: int
    window_success_count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.state.value,
            "opened_at": self.opened_at,
            "window_size": self.window_size,
            "window_success_count": self.window_success_count,
        }


class CircuitBreakerRegistry:
    """Table of circuits keyed by model id, kept in least-recently-used order."""

    def __init__(
        self,
        *,
        window_size: int = WINDOW_SIZE,
        success_rate_threshold: float = SUCCESS_RATE_THRESHOLD,
        open_duration: float = OPEN_DURATION,
        max_circuits: int = MAX_CIRCUITS,
        cleanup_interval: float = CLEANUP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_size = window_size
        self.success_rate_threshold = success_rate_threshold
        self.open_duration = open_duration
        self.max_circuits = max_circuits
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._circuits: OrderedDict[str, Circuit] = OrderedDict()
        self._last_cleanup = clock()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._circuits)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._circuits

    def _get(self, model_id: str) -> Circuit:
        """Fetch or create a circuit, touching it for LRU purposes."""
        now = self._clock()
        if now - self._last_cleanup >= self.cleanup_interval:
            self._evict(now)

        circuit = self._circuits.get(model_id)
        if circuit is None:
            circuit = Circuit(
                last_accessed_at=now,
                outcomes=deque(maxlen=self.window_size),
            )
            self._circuits[model_id] = circuit
        else:
            circuit.last_accessed_at = now
            self._circuits.move_to_end(model_id)
        return circuit

    def _evict(self, now: float) -> int:
        self._last_cleanup = now
        excess = len(self._circuits) - self.max_circuits
        if excess <= 0:
            return 0
        for _ in range(excess):
            self._circuits.popitem(last=False)
        logger.info("Evicted %d least-recently-used circuit(s)", excess)
        return excess

    def evict_stale(self) -> int:
        """Evict least-recently-accessed circuits down to the cap now.

        Returns:
            Number of circuits evicted.
        """
        with self._lock:
            return self._evict(self._clock())

    def can_call(self, model_id: str) -> bool:
        """Check whether a call to ``model_id`` may go ahead.

        This is a state-advancing check, not a pure query: when an open
        circuit's timer has expired, calling this moves it to half-open and
        grants the single trial call. A ``True`` result must be followed by
        exactly one ``record_outcome``.
        """
        with self._lock:
            circuit = self._get(model_id)

            if circuit.state is CircuitState.CLOSED:
                return True

            if circuit.state is CircuitState.OPEN:
                if circuit.opened_at is not None and self._clock() - circuit.opened_at >= self.open_duration:
                    circuit.state = CircuitState.HALF_OPEN
                    circuit.trial_in_flight = True
                    logger.info("Circuit %s -> half-open (trial allowed)", model_id)
                    return True
                return False

            # HALF_OPEN: only the one trial call
            if circuit.trial_in_flight:
                return False
            circuit.trial_in_flight = True
            return True

    def record_outcome(self, model_id: str, success: bool) -> None:
        """Record the result of a call that ``can_call`` allowed."""
        with self._lock:
            circuit = self._get(model_id)
            now = self._clock()

            if circuit.state is CircuitState.HALF_OPEN:
                circuit.trial_in_flight = False
                if success:
                    circuit.state = CircuitState.CLOSED
                    circuit.opened_at = None
                    circuit.outcomes.clear()
                    logger.info("Circuit %s -> closed (trial succeeded)", model_id)
                else:
                    circuit.state = CircuitState.OPEN
                    circuit.opened_at = now
                    logger.warning("Circuit %s -> open (trial failed)", model_id)
                return

            if circuit.state is CircuitState.OPEN:
                # Late outcome from a call admitted before the circuit opened
                logger.debug("Ignoring outcome for open circuit %s", model_id)
                return

            circuit.outcomes.append(Outcome(success=success, timestamp=now))
            if len(circuit.outcomes) < self.window_size:
                return

            success_rate = circuit.success_count / len(circuit.outcomes)
            if success_rate < self.success_rate_threshold:
                circuit.state = CircuitState.OPEN
                circuit.opened_at = now
                logger.warning(
                    "Circuit %s -> open (success rate %.0f%% over last %d calls)",
                    model_id,
                    success_rate * 100,
                    len(circuit.outcomes),
                )

    def get_state(self, model_id: str) -> CircuitSnapshot:
        """Return a snapshot of the circuit for ``model_id``."""
        with self._lock:
            circuit = self._get(model_id)
            return CircuitSnapshot(
                state=circuit.state,
                opened_at=circuit.opened_at,
                window_size=len(circuit.outcomes),
                window_success_count=circuit.success_count,
            )

    def snapshot_all(self) -> dict[str, CircuitSnapshot]:
        """Snapshots of every tracked circuit, without touching them."""
        with self._lock:
            return {
                model_id: CircuitSnapshot(
                    state=c.state,
                    opened_at=c.opened_at,
                    window_size=len(c.outcomes),
                    window_success_count=c.success_count,
                )
                for model_id, c in self._circuits.items()
            }
