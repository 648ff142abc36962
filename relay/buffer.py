"""
Partial-aggregation buffer for the relay.

Tracks in-flight rounds keyed by (job_id, round_id). Each open round holds
the set of part ids received so far; a round closes, and its key is
removed, the moment the set reaches max_parts. Completion is a pure
cardinality check, so parts may arrive in any order.
"""

from typing import Dict, FrozenSet, List, Set, Tuple

from core.errors import BufferOverflow, DuplicatePart


RoundKey = Tuple[int, int]  # (job_id, round_id)


class AggregationBuffer:
    """
    Bounded map of open rounds to received part ids.

    Invariants:
    - A key is present iff at least one part arrived and the round is open
    - No set ever holds a duplicate part id
    - len(self) <= capacity
    """

    def __init__(self, max_parts: int, capacity: int = 10):
        """
        Initialize aggregation buffer.

        Args:
            max_parts: Distinct parts needed to complete a round
            capacity: Maximum number of simultaneously open rounds
        """
        if max_parts < 1:
            raise ValueError("max_parts must be >= 1")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self.max_parts = max_parts
        self.capacity = capacity
        self._rounds: Dict[RoundKey, Set[int]] = {}

    def add(self, job_id: int, round_id: int, part_id: int) -> bool:
        """
        Record one part of a round.

        Args:
            job_id: Job identifier
            round_id: Round identifier
            part_id: Part identifier

        Returns:
            True if this part completed the round (the key is now closed)

        Raises:
            BufferOverflow: The buffer is full and this round is not open;
                nothing is created
            DuplicatePart: The part was already recorded; nothing changes
        """
        key = (job_id, round_id)
        parts = self._rounds.get(key)

        if parts is None:
            if len(self._rounds) >= self.capacity:
                raise BufferOverflow(key, self.capacity)
            parts = set()
            self._rounds[key] = parts
        elif part_id in parts:
            raise DuplicatePart(key, part_id)

        parts.add(part_id)

        if len(parts) >= self.max_parts:
            del self._rounds[key]
            return True

        return False

    def is_open(self, job_id: int, round_id: int) -> bool:
        return (job_id, round_id) in self._rounds

    def is_full(self) -> bool:
        return len(self._rounds) >= self.capacity

    def parts(self, job_id: int, round_id: int) -> FrozenSet[int]:
        """Parts received so far for an open round (empty if not open)."""
        return frozenset(self._rounds.get((job_id, round_id), ()))

    def open_rounds(self) -> List[RoundKey]:
        """Keys of all open rounds in insertion order."""
        return list(self._rounds)

    def __len__(self) -> int:
        return len(self._rounds)

    def __contains__(self, key: RoundKey) -> bool:
        return key in self._rounds
