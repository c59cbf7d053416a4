"""Deterministic build status state machine.

Enforces:
- Valid status transitions only (VALID_BUILD_TRANSITIONS table)
- BUILDING -> SUCCESS | FAILED, nothing else
- Terminal statuses never change again
"""

from __future__ import annotations

import logging

from enclaveforge.models.build import VALID_BUILD_TRANSITIONS, BuildStatus

logger = logging.getLogger(__name__)


class InvalidBuildTransitionError(RuntimeError):
    """Raised when a requested status transition is not valid."""


class BuildStateMachine:
    """Tracks the last known status of each build this process has seen."""

    def __init__(self) -> None:
        self._states: dict[str, BuildStatus] = {}
        self._history: dict[str, list[tuple[BuildStatus, BuildStatus]]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def register(self, build_id: str) -> BuildStatus:
        """Start tracking a freshly submitted build in BUILDING."""
        if build_id in self._states:
            raise InvalidBuildTransitionError(f"Build {build_id} is already registered")
        self._states[build_id] = BuildStatus.BUILDING
        self._history[build_id] = []
        return BuildStatus.BUILDING

    def current(self, build_id: str) -> BuildStatus | None:
        return self._states.get(build_id)

    def history(self, build_id: str) -> list[tuple[BuildStatus, BuildStatus]]:
        return list(self._history.get(build_id, []))

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(self, build_id: str, target: BuildStatus) -> BuildStatus:
        """Move *build_id* to *target*.

        Raises ``InvalidBuildTransitionError`` for anything not in the
        transition table, including BUILDING -> BUILDING.
        """
        current = self._states.get(build_id)
        if current is None:
            raise InvalidBuildTransitionError(f"Build {build_id} is not registered")
        allowed = VALID_BUILD_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidBuildTransitionError(
                f"Cannot transition build {build_id} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        self._states[build_id] = target
        self._history[build_id].append((current, target))
        logger.debug("Build %s: %s -> %s", build_id, current.value, target.value)
        return target

    def observe(self, build_id: str, status: BuildStatus) -> BuildStatus:
        """Reconcile a status reported by the service.

        Re-observing the current status is a no-op.  The first observation
        of an untracked build is accepted as-is; after that every change
        must be a valid transition, so a terminal build reported as
        BUILDING again is an error.
        """
        current = self._states.get(build_id)
        if current is None:
            self._states[build_id] = status
            self._history[build_id] = []
            return status
        if current is status:
            return status
        return self.transition(build_id, status)
