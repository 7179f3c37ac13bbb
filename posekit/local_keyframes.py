"""Selecting the local map: keyframes near the current frame and their points."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Iterable, Optional, Sequence

__all__ = [
    "KeyFrameNode",
    "LocalMapSelection",
    "select_local_keyframes",
    "collect_local_points",
]

_DEFAULT_LIMIT = 80
_BEST_COVISIBLES = 10


@dataclass(eq=False)
class KeyFrameNode:
    """A keyframe in the covisibility graph and spanning tree.

    ``neighbours`` is ordered from most to least covisible. ``map_points``
    holds one entry per keypoint, ``None`` where there is no map point.
    Nodes compare and hash by identity.
    """

    id: int
    bad: bool = False
    neighbours: list[KeyFrameNode] = field(default_factory=list, repr=False)
    children: list[KeyFrameNode] = field(default_factory=list, repr=False)
    parent: Optional[KeyFrameNode] = field(default=None, repr=False)
    map_points: list[Optional[Hashable]] = field(default_factory=list, repr=False)


@dataclass(frozen=True)
class LocalMapSelection:
    """Local keyframes and the one sharing most points with the current frame.

    An empty selection means the frame observed nothing; the previous local
    map should then be kept.
    """

    keyframes: list[KeyFrameNode]
    reference: Optional[KeyFrameNode]

    @property
    def empty(self) -> bool:
        return not self.keyframes and self.reference is None


def _first_new(candidates: Iterable[KeyFrameNode], included: set[int]) -> Optional[KeyFrameNode]:
    for node in candidates:
        if not node.bad and id(node) not in included:
            return node
    return None


def select_local_keyframes(
    observations: Iterable[Iterable[KeyFrameNode]], limit: int = _DEFAULT_LIMIT
) -> LocalMapSelection:
    """Build the local keyframe set from the keyframes observing each matched point.

    Every good keyframe that observes a matched point is included; then
    each of those adds its best new neighbour, its first new child and its
    parent, until more than ``limit`` keyframes are gathered. Reaching a
    new parent ends the extension.
    """
    counter: dict[int, tuple[KeyFrameNode, int]] = {}
    for observers in observations:
        for node in observers:
            _, count = counter.get(id(node), (node, 0))
            counter[id(node)] = (node, count + 1)

    if not counter:
        return LocalMapSelection([], None)

    best_count = 0
    reference: Optional[KeyFrameNode] = None
    keyframes: list[KeyFrameNode] = []
    included: set[int] = set()
    for node, count in counter.values():
        if node.bad:
            continue
        if count > best_count:
            best_count = count
            reference = node
        keyframes.append(node)
        included.add(id(node))

    def include(node: KeyFrameNode) -> None:
        keyframes.append(node)
        included.add(id(node))

    for node in list(keyframes):
        if len(keyframes) > limit:
            break

        neighbour = _first_new(node.neighbours[:_BEST_COVISIBLES], included)
        if neighbour is not None:
            include(neighbour)

        child = _first_new(node.children, included)
        if child is not None:
            include(child)

        parent = node.parent
        if parent is not None and id(parent) not in included:
            include(parent)
            break

    return LocalMapSelection(keyframes, reference)


def collect_local_points(keyframes: Sequence[KeyFrameNode]) -> list[Any]:
    """Distinct map points of the keyframes, in order; points whose ``bad`` is true are skipped."""
    seen: set[int] = set()
    points: list[Any] = []
    for node in keyframes:
        for point in node.map_points:
            if point is None or id(point) in seen:
                continue
            if getattr(point, "bad", False):
                continue
            seen.add(id(point))
            points.append(point)
    return points