import logging
import threading
from enum import Enum
from typing import Optional

from headpose.core.types import Frame

log = logging.getLogger(__name__)


class GateState(Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    CLOSED = "closed"


class FrameDispatchGate:
    """
    Single-flight admission: at most one frame under analysis.

    A frame arriving while another is processing is released on the spot,
    never queued. Each admitted frame gets a ticket; release() only re-opens
    the gate for the ticket currently in flight, so a late or duplicate
    completion for an earlier frame cannot let a second frame in.
    release() may be called from any thread. Once closed the gate admits nothing.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = GateState.IDLE
        self._ticket = 0
        self._in_flight: Optional[int] = None
        self.admitted = 0
        self.dropped = 0

    @property
    def state(self) -> GateState:
        with self._lock:
            return self._state

    @property
    def is_busy(self) -> bool:
        return self.state is GateState.PROCESSING

    @property
    def in_flight(self) -> Optional[int]:
        """Ticket of the frame being processed, None when idle or closed."""
        with self._lock:
            return self._in_flight

    def admit(self, frame: Frame) -> Optional[int]:
        """Idle -> Processing and a fresh ticket; otherwise close the frame and return None."""
        with self._lock:
            if self._state is GateState.IDLE:
                self._state = GateState.PROCESSING
                self._ticket += 1
                self._in_flight = self._ticket
                self.admitted += 1
                return self._ticket
            self.dropped += 1
            state = self._state

        log.debug("Frame dropped (gate %s)", state.value)
        frame.close()
        return None

    def release(self, ticket: int) -> bool:
        """Processing -> Idle for the in-flight ticket. Stale tickets are ignored."""
        with self._lock:
            if self._state is GateState.PROCESSING and ticket == self._in_flight:
                self._state = GateState.IDLE
                self._in_flight = None
                return True
            return False

    def close(self) -> None:
        with self._lock:
            self._state = GateState.CLOSED
            self._in_flight = None
