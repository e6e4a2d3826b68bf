"""
Progress Events Module
Typed progress events and a non-blocking broadcast bus for listeners.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

LISTENER_BUFFER = 100


class EventKind(Enum):
    LOG = "log"
    PROGRESS = "progress"
    SUBMIT_COUNTDOWN = "submit_countdown"
    QUIZ_COMPLETED = "quiz_completed"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    kind: EventKind
    message: str
    current_index: int = 0
    total_count: int = 0
    quiz_name: str = ''
    quiz_position: int = 0
    batch_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape relayed to front-end listeners."""
        data = {
            'type': self.kind.value,
            'message': self.message,
            'progress': self.current_index,
            'total': self.total_count,
        }
        if self.quiz_name:
            data['quizName'] = self.quiz_name
        if self.quiz_position:
            data['quizProgress'] = self.quiz_position
        if self.batch_size:
            data['quizTotal'] = self.batch_size
        return data


class EventBus:
    """
    Broadcasts progress events to every connected listener.

    Each listener owns a bounded queue. Publishing never blocks: when a listener's
    queue is full the event is dropped for that listener only.
    """

    def __init__(self, buffer_size: int = LISTENER_BUFFER):
        self.buffer_size = buffer_size
        self._listeners: Set[asyncio.Queue] = set()
        self._observers: List[Callable[[ProgressEvent], None]] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_size)
        self._listeners.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._listeners.discard(queue)

    def add_observer(self, observer: Callable[[ProgressEvent], None]):
        """Register a synchronous callback invoked for every event."""
        self._observers.append(observer)

    def publish(self, event: ProgressEvent):
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning(f"Event observer failed: {e}")

        for queue in list(self._listeners):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug("Listener queue full, dropping event")


class ProgressReporter:
    """
    Mirrors pipeline progress to the event bus and the module logger.

    Components receive a reporter instead of a bare callback, so a listener sees a
    readable narrative (log events) alongside structured progress.
    """

    def __init__(self, bus: Optional[EventBus] = None, log: Optional[logging.Logger] = None):
        self.bus = bus
        self.logger = log or logger

    def emit(self, kind: EventKind, message: str, current: int = 0, total: int = 0,
             quiz_name: str = '', quiz_position: int = 0, batch_size: int = 0):
        self.logger.info(message)
        if self.bus is not None:
            self.bus.publish(ProgressEvent(
                kind=kind,
                message=message,
                current_index=current,
                total_count=total,
                quiz_name=quiz_name,
                quiz_position=quiz_position,
                batch_size=batch_size,
            ))

    def log(self, message: str):
        self.emit(EventKind.LOG, message)

    def debug(self, message: str):
        self.logger.debug(message)

    def progress(self, message: str, current: int = 0, total: int = 0,
                 quiz_name: str = '', quiz_position: int = 0, batch_size: int = 0):
        self.emit(EventKind.PROGRESS, message, current, total, quiz_name, quiz_position, batch_size)

    def child(self, log: logging.Logger) -> "ProgressReporter":
        """Same bus, different logger (one per component module)."""
        return ProgressReporter(self.bus, log)
