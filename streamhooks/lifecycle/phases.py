"""Process lifecycle phases."""

import enum
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from streamhooks.observability import lifecycle_phase

logger = logging.getLogger(__name__)


class LifecycleError(RuntimeError):
    """A phase transition that would move the process backwards."""


class LifecyclePhase(enum.IntEnum):
    """Phases of the process, in the only order they may be entered."""

    INITIALIZING = 0
    PERSISTENCE_READY = 1
    LISTENING = 2
    ACTIVE = 3
    SHUTTING_DOWN = 4
    TERMINATED = 5

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", "-")


class PhaseTracker:
    """
    Current phase plus the time each phase was entered.

    Phases may be skipped (a failed startup goes straight to terminated)
    but never re-entered.
    """

    def __init__(self) -> None:
        self._phase = LifecyclePhase.INITIALIZING
        self._history: List[Tuple[LifecyclePhase, datetime]] = [
            (LifecyclePhase.INITIALIZING, datetime.now(timezone.utc))
        ]
        lifecycle_phase.set(int(self._phase))

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def history(self) -> List[Tuple[LifecyclePhase, datetime]]:
        return list(self._history)

    def advance(self, phase: LifecyclePhase) -> None:
        """
        Enter ``phase``.

        Raises:
            LifecycleError: If ``phase`` is not after the current phase
        """
        if phase <= self._phase:
            raise LifecycleError(f"cannot enter {phase.label} from {self._phase.label}")
        previous = self._phase
        self._phase = phase
        self._history.append((phase, datetime.now(timezone.utc)))
        lifecycle_phase.set(int(phase))
        logger.info(
            "Lifecycle phase changed",
            extra={"from_phase": previous.label, "to_phase": phase.label},
        )

    def __repr__(self) -> str:
        return f"PhaseTracker(phase={self._phase.label})"
