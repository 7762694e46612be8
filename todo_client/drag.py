"""Reordering todos by pointer drag or touch long-press.

Indexes always refer to positions in the store's full ``todos`` list.
"""

import logging
import time
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

LONG_PRESS_MS = 300
MOVE_TOLERANCE_PX = 10


def reorder_items(items: Sequence[T], from_index: int, to_index: int) -> List[T]:
    """Swap the elements at ``from_index`` and ``to_index``.

    A pairwise swap, not a move: everything else stays put, and applying the
    same swap twice gives back the starting order.
    """
    n = len(items)
    for index in (from_index, to_index):
        if not 0 <= index < n:
            raise IndexError(f'reorder index {index} out of range for {n} items')
    arr = list(items)
    arr[from_index], arr[to_index] = arr[to_index], arr[from_index]
    return arr


class Rect(NamedTuple):
    """Vertical extent of one rendered todo row."""
    top: float
    bottom: float

    @property
    def center(self) -> float:
        return self.top + (self.bottom - self.top) / 2


def find_target_index(y: float, rects: Sequence[Rect]) -> int:
    """Row under ``y``; when none overlaps, the row whose centre is nearest.

    Returns -1 for an empty list.
    """
    target = -1
    best = float('inf')
    for i, rect in enumerate(rects):
        if rect.top <= y <= rect.bottom:
            return i
        distance = abs(y - rect.center)
        if distance < best:
            best = distance
            target = i
    return target


class DragPhase(Enum):
    IDLE = 'idle'
    PENDING = 'pending'    # touch down, waiting for the long press
    DRAGGING = 'dragging'


# (phase, event) -> next phase. Pairs not listed are ignored.
TRANSITIONS = {
    (DragPhase.IDLE, 'drag_start'): DragPhase.DRAGGING,
    (DragPhase.IDLE, 'touch_start'): DragPhase.PENDING,
    (DragPhase.PENDING, 'long_press'): DragPhase.DRAGGING,
    (DragPhase.PENDING, 'cancel'): DragPhase.IDLE,
    (DragPhase.PENDING, 'touch_end'): DragPhase.IDLE,
    (DragPhase.DRAGGING, 'move'): DragPhase.DRAGGING,
    (DragPhase.DRAGGING, 'drop'): DragPhase.IDLE,
    (DragPhase.DRAGGING, 'drag_end'): DragPhase.IDLE,
    (DragPhase.DRAGGING, 'touch_end'): DragPhase.IDLE,
}


class DragHandler:
    """Gesture state machine.

    ``on_reorder(from_index, to_index)`` is called for every swap, including
    each intermediate swap during a touch drag. ``on_drop()`` is called once
    when a drag that swapped something finishes, so the final order can be
    sent to the server.
    ``clock`` returns seconds; tests pass a fake one.
    """

    def __init__(
        self,
        on_reorder: Callable[[int, int], None],
        on_drop: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        long_press_ms: int = LONG_PRESS_MS,
        move_tolerance: float = MOVE_TOLERANCE_PX,
    ):
        self.on_reorder = on_reorder
        self.on_drop = on_drop
        self.clock = clock
        self.long_press_ms = long_press_ms
        self.move_tolerance = move_tolerance
        self.phase = DragPhase.IDLE
        self._reset()

    def _reset(self) -> None:
        self.drag_index = -1
        # set once on_reorder has fired during the current gesture
        self.moved = False
        self.drag_over_index = -1
        self.touch_start_index = -1
        self.touch_start_time: Optional[float] = None
        self.initial_x: Optional[float] = None
        self.initial_y: Optional[float] = None

    def _fire(self, event: str) -> bool:
        nxt = TRANSITIONS.get((self.phase, event))
        if nxt is None:
            logger.debug('drag: ignoring %s while %s', event, self.phase.value)
            return False
        self.phase = nxt
        return True

    @property
    def is_dragging(self) -> bool:
        return self.phase is DragPhase.DRAGGING

    def _swap(self, from_index: int, to_index: int) -> None:
        self.moved = True
        self.on_reorder(from_index, to_index)

    def _finish(self) -> None:
        """End the gesture; ``on_drop`` only fires when something moved."""
        moved = self.moved
        self._reset()
        if moved and self.on_drop is not None:
            self.on_drop()

    # desktop drag and drop

    def handle_drag_start(self, index: int, on_handle: bool = True) -> bool:
        # only the drag handle starts a drag
        if not on_handle or not self._fire('drag_start'):
            return False
        self.drag_index = index
        return True

    def handle_drag_enter(self, index: int) -> None:
        if self.is_dragging and index != self.drag_index:
            self.drag_over_index = index

    def handle_drop(self, index: int) -> None:
        if not self.is_dragging:
            return
        from_index = self.drag_index
        self._fire('drop')
        if index != from_index:
            self._swap(from_index, index)
        self._finish()

    def handle_drag_end(self) -> None:
        """Drag released outside any row: nothing moves."""
        if self._fire('drag_end'):
            self._reset()

    # touch

    def handle_touch_start(self, index: int, x: float, y: float, on_handle: bool = True, now: Optional[float] = None) -> bool:
        if not on_handle or not self._fire('touch_start'):
            return False
        self.touch_start_index = index
        self.touch_start_time = self.clock() if now is None else now
        self.initial_x = x
        self.initial_y = y
        return True

    def poll(self, now: Optional[float] = None) -> DragPhase:
        """Promote a pending touch to a drag once the long press elapses."""
        if self.phase is DragPhase.PENDING and self.touch_start_time is not None:
            now = self.clock() if now is None else now
            if (now - self.touch_start_time) * 1000 >= self.long_press_ms:
                self._fire('long_press')
                self.drag_index = self.touch_start_index
        return self.phase

    def handle_touch_move(self, x: float, y: float, rects: Sequence[Rect], now: Optional[float] = None) -> None:
        self.poll(now)
        if self.phase is DragPhase.PENDING:
            # moving before the long press fires is a scroll, not a drag
            if abs(x - self.initial_x) > self.move_tolerance or abs(y - self.initial_y) > self.move_tolerance:
                self._fire('cancel')
                self._reset()
            return
        if not self.is_dragging:
            return
        self._fire('move')
        target = find_target_index(y, rects)
        if target != -1 and target != self.drag_index and target < len(rects):
            self.drag_over_index = target
            self._swap(self.drag_index, target)
            self.drag_index = target

    def handle_touch_end(self, now: Optional[float] = None) -> None:
        self.poll(now)
        was_dragging = self.is_dragging
        if not self._fire('touch_end'):
            return
        if was_dragging:
            self._finish()
        else:
            # a tap
            self._reset()
