"""
Capacity Pool Model — pure computations over a bounded range of spaces.

Space identifiers are the decimal strings "1".."total_spaces". Allocation
always scans in ascending numeric order, so repeated calls against the
same entity set return the same ids.
"""

from typing import Iterable, List, Optional, Set

from space_sync.errors import CapacityExceeded
from space_sync.models.capacity import CapacityPool
from space_sync.models.entity import Entity


def occupied_space_ids(entities: Iterable[Entity]) -> Set[str]:
    """Space ids currently held by some entity."""
    return {e.assigned_space_id for e in entities if e.assigned_space_id is not None}


def compute_capacity(total_spaces: int, entities: Iterable[Entity]) -> CapacityPool:
    """Derive the pool occupancy from the current entity set."""
    assigned = sum(1 for e in entities if e.assigned_space_id is not None)
    return CapacityPool(total_spaces=total_spaces, assigned_spaces=assigned)


def next_available_space_ids(
    total_spaces: int,
    entities: Iterable[Entity],
    count: int,
    exclude: Optional[Set[str]] = None,
) -> List[str]:
    """
    Return the `count` smallest free space ids in ascending order.

    Raises CapacityExceeded when fewer than `count` ids are free.
    """
    if count <= 0:
        return []
    taken = occupied_space_ids(entities) | (exclude or set())
    free: List[str] = []
    for number in range(1, total_spaces + 1):
        candidate = str(number)
        if candidate in taken:
            continue
        free.append(candidate)
        if len(free) == count:
            return free
    raise CapacityExceeded(requested=count, available=len(free))


def ensure_capacity(pool: CapacityPool, new_allocations: int) -> None:
    """Reject an operation that would drive available spaces below zero."""
    if new_allocations > pool.available_spaces:
        raise CapacityExceeded(
            requested=new_allocations, available=pool.available_spaces
        )
