"""Shuffle bag: non-repeating random picks over small variant groups."""

import random
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional


@dataclass
class ShuffleState:
    """A permutation of variant indices and the position of the next pick."""
    permutation: List[int] = field(default_factory=list)
    cursor: int = 0


class ShuffleSelector:
    """
    Per-key shuffle bag.

    Every run of ``variant_count`` consecutive picks for a key is a
    permutation of ``range(variant_count)``. A fresh permutation is drawn
    each time the cursor wraps, so the first pick of a cycle may repeat the
    last pick of the previous one.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._states: Dict[Hashable, ShuffleState] = {}

    def _shuffled(self, count: int) -> List[int]:
        indices = list(range(count))
        self._rng.shuffle(indices)
        return indices

    def next(self, key: Hashable, variant_count: int) -> int:
        """
        Return the next variant index for ``key``.

        Raises:
            ValueError: if variant_count is not positive
        """
        if variant_count <= 0:
            raise ValueError(f"variant_count must be positive, got {variant_count}")
        if variant_count == 1:
            return 0

        state = self._states.get(key)
        if state is None or len(state.permutation) != variant_count:
            state = ShuffleState(self._shuffled(variant_count), 0)
            self._states[key] = state
        elif state.cursor == 0:
            # Previous cycle finished
            state.permutation = self._shuffled(variant_count)

        index = state.permutation[state.cursor]
        state.cursor = (state.cursor + 1) % variant_count
        return index

    def peek_state(self, key: Hashable) -> Optional[ShuffleState]:
        return self._states.get(key)

    def reset(self, key: Optional[Hashable] = None) -> None:
        """Forget one bag, or every bag when no key is given."""
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)

    def __len__(self) -> int:
        return len(self._states)
