"""Deferred capacity validation for overlapping blocks.

The first time a concrete payload type is written through a union's
overlapping block its byte size is compared against the block capacity.
The outcome is memoized per (union definition, concrete type, capacity) so
that concurrent first use computes the size once and every caller sees the
same pass/fail result. Two definitions that merely share a name are
distinct keys.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Tuple

from sumlayout.internals.errors import RuntimeCapacityError
from sumlayout.semantics.model import UnionDefinition
from sumlayout.semantics.typesys import Type

logger = logging.getLogger(__name__)

CapacityKey = Tuple[UnionDefinition, Type, int]


class CapacityRegistry:
    """Memoized capacity checks owned by one UnionRuntime."""

    def __init__(self):
        self._lock = threading.Lock()
        self._required: Dict[CapacityKey, int] = {}
        self.computations = 0

    def check(self, definition: UnionDefinition, ty: Type, capacity: int,
              size_of: Callable[[Type], int]) -> None:
        """Validate that ``ty`` fits ``capacity`` bytes of ``definition``'s block.

        Raises:
            RuntimeCapacityError: If the type needs more bytes than the block has.
        """
        key = (definition, ty, capacity)
        required = self._required.get(key)
        if required is None:
            with self._lock:
                required = self._required.get(key)
                if required is None:
                    required = size_of(ty)
                    self._required[key] = required
                    self.computations += 1
                    logger.debug("%s: %s needs %d of %d bytes", definition.name, ty, required, capacity)

        if required > capacity:
            raise RuntimeCapacityError(str(ty), required, capacity, definition.name)

    def is_checked(self, definition: UnionDefinition, ty: Type) -> bool:
        return any(key[0] == definition and key[1] == ty for key in self._required)

    def __len__(self) -> int:
        return len(self._required)

    def clear(self) -> None:
        with self._lock:
            self._required.clear()
            self.computations = 0
