"""
Placement heuristic for newly created nodes.

Deterministic for a given input: the same related nodes and layout always
produce the same position.
"""
import math
from typing import Optional, Sequence

from models import Position

# Offset applied to a node with a single anchor: right and slightly below
SINGLE_ANCHOR_OFFSET = 300.0
# Diagonal offset from the centre of several anchors
MULTI_ANCHOR_OFFSET = 250.0
# Nodes closer than this are considered overlapping
MIN_NODE_DISTANCE = 200.0
# Spiral search parameters
SPIRAL_STEP = 150.0
SPIRAL_ANGLE_DEGREES = 45.0
SPIRAL_STEPS_PER_RING = 8
DEFAULT_MAX_ATTEMPTS = 10


def place(
    related: Sequence[Position],
    all_positions: Sequence[Position] = (),
    viewport_center: Optional[Position] = None,
) -> Position:
    """
    Desired position for a node connected to `related`.

    No anchors: the viewport centre, or the origin. One anchor: offset from it.
    Several anchors: the centre of their bounding box plus a diagonal offset,
    so the node lands between them rather than on top of one.
    """
    if not related:
        if viewport_center is not None:
            return Position(x=viewport_center.x, y=viewport_center.y)
        return Position(x=0.0, y=0.0)

    if len(related) == 1:
        anchor = related[0]
        return Position(
            x=anchor.x + SINGLE_ANCHOR_OFFSET,
            y=anchor.y + SINGLE_ANCHOR_OFFSET * 0.5,
        )

    xs = [p.x for p in related]
    ys = [p.y for p in related]
    center_x = (min(xs) + max(xs)) / 2
    center_y = (min(ys) + max(ys)) / 2
    return Position(x=center_x + MULTI_ANCHOR_OFFSET, y=center_y + MULTI_ANCHOR_OFFSET)


def has_conflict(
    position: Position,
    all_positions: Sequence[Position],
    min_distance: float = MIN_NODE_DISTANCE,
) -> bool:
    return any(
        math.hypot(other.x - position.x, other.y - position.y) < min_distance
        for other in all_positions
    )


def resolve(
    desired: Position,
    all_positions: Sequence[Position],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Position:
    """
    Walk an expanding spiral around `desired` until a candidate is at least
    MIN_NODE_DISTANCE away from every node. Best effort: once the attempts run
    out the last candidate is returned even if it still overlaps.
    """
    position = Position(x=desired.x, y=desired.y)
    attempts = 0
    while has_conflict(position, all_positions) and attempts < max_attempts:
        angle = math.radians(attempts * SPIRAL_ANGLE_DEGREES)
        radius = SPIRAL_STEP * (1 + attempts // SPIRAL_STEPS_PER_RING)
        position = Position(
            x=desired.x + radius * math.cos(angle),
            y=desired.y + radius * math.sin(angle),
        )
        attempts += 1
    return position


def place_and_resolve(
    related: Sequence[Position],
    all_positions: Sequence[Position],
    viewport_center: Optional[Position] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Position:
    return resolve(place(related, all_positions, viewport_center), all_positions, max_attempts)
