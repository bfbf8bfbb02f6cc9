"""In-memory store of observed positions.

This is the only component allowed to merge incoming position candidates.
"""

from __future__ import annotations

from pymedibot.models.location import ObservedPosition
from pymedibot.state.events import PositionCandidate
from pymedibot.state.policy import should_accept_position


class PositionStateStore:
    """Freshest-known position per subject.

    Deterministic: given the same set of candidates, in any order, it
    ends on the same position (ties keep whichever arrived first).
    """

    def __init__(self) -> None:
        self._positions: dict[str, ObservedPosition] = {}

    def apply(self, candidate: PositionCandidate) -> ObservedPosition | None:
        """Apply a candidate.

        Returns the new :class:`ObservedPosition` when the candidate was
        accepted, ``None`` when it was discarded as stale.
        """
        current = self._positions.get(candidate.subject_id)
        if not should_accept_position(
            current_ts=current.last_updated if current is not None else None,
            current_source=current.source if current is not None else None,
            incoming_ts=candidate.timestamp,
            incoming_source=candidate.source,
        ):
            return None

        # Replace, never merge field by field.
        position = ObservedPosition(
            subject_id=candidate.subject_id,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            last_updated=candidate.timestamp,
            source=candidate.source,
        )
        self._positions[candidate.subject_id] = position
        return position

    def get(self, subject_id: str) -> ObservedPosition | None:
        return self._positions.get(subject_id)

    def discard(self, subject_id: str) -> None:
        self._positions.pop(subject_id, None)

    def __contains__(self, subject_id: object) -> bool:
        return subject_id in self._positions
