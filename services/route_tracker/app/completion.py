"""Route completion rules.

Every mutating route operation derives two sets inside one transaction and
hands them to the functions below:

* the *required* POIs: the target's original POIs minus the POIs currently
  removed from the route,
* the *visited* POIs: the distinct non-null POI ids over all visited traces.

The functions are pure and take materialized collections only.
"""

from __future__ import annotations

from typing import AbstractSet, Collection, Iterable, Sequence


def required_poi_ids(original: Sequence[int], removed: Iterable[int]) -> list[int]:
    """Original POIs minus removed ones, circuit order and first occurrence kept."""

    removed_set = set(removed)
    seen: set[int] = set()
    required: list[int] = []
    for poi_id in original:
        if poi_id in removed_set or poi_id in seen:
            continue
        seen.add(poi_id)
        required.append(poi_id)
    return required


def evaluate(required: Collection[int], visited: AbstractSet[int]) -> bool:
    """Return whether every required POI has been visited.

    An empty requirement never completes a route. Visited POIs outside the
    required set (for example a POI visited and later removed) are ignored.
    """

    required_set = set(required)
    if not required_set:
        return False
    return len(required_set & visited) == len(required_set)


def evaluate_relaxed(required: Collection[int], visited: AbstractSet[int]) -> bool:
    """Completion check applied after a POI removal.

    Compares raw sizes before membership, so a visited set holding POIs that
    are no longer required still satisfies it.
    """

    if not required or len(required) > len(visited):
        return False
    return all(poi_id in visited for poi_id in required)


def should_revert(required: Collection[int], visited: AbstractSet[int]) -> bool:
    """Whether a completed route must go back to active after a POI is restored."""

    return len(required) > len(visited)
