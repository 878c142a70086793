"""
Head pose detection pipeline.

Frames enter through process_frame() on the capture thread. The dispatch gate
admits one at a time, under a ticket, and hands it to the landmark source with
callbacks bound to that ticket. The source reports back (from whatever thread it
likes) through on_landmarks / on_empty / on_error; those only enqueue. A single
pose worker thread turns the first report for the in-flight ticket into an
outcome, delivers it to the listener and re-opens the gate. Any later report for
the same frame is stale and dropped.
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, Optional, Protocol, Tuple, Union

import numpy as np

from headpose.core.config import HeadPoseConfig
from headpose.core.dispatch_gate import FrameDispatchGate, GateState
from headpose.core.pose_solver import PoseSolver
from headpose.core.reference_model import ReferenceModelStore
from headpose.core.stabilizer import TemporalStabilizer
from headpose.core.types import (
    NO_FACE,
    DetectionError,
    Frame,
    HeadPoseResult,
    LandmarkObservation,
    NoFace,
    PoseOutcome,
    ReferenceModel,
    StabilizedState,
    Thresholds,
)

log = logging.getLogger(__name__)


class HeadPoseListener(Protocol):
    """Receives exactly one call per admitted frame."""

    def on_head_pose_detected(self, result: HeadPoseResult) -> None:
        ...

    def on_no_face_detected(self) -> None:
        ...

    def on_error(self, error: str) -> None:
        ...


class LandmarkCallbacks(Protocol):
    def on_landmarks(self, observation: LandmarkObservation) -> None:
        ...

    def on_empty(self) -> None:
        ...

    def on_error(self, error: str) -> None:
        ...


class LandmarkSource(Protocol):
    """
    External landmark detector. detect_async() owns the frame from then on
    (must close it) and must eventually call exactly one of the callbacks.
    """

    def detect_async(self, frame: Frame, callbacks: LandmarkCallbacks) -> None:
        ...

    def close(self) -> None:
        ...


def dispatch_outcome(listener: HeadPoseListener, outcome: PoseOutcome) -> None:
    if isinstance(outcome, HeadPoseResult):
        listener.on_head_pose_detected(outcome)
    elif isinstance(outcome, NoFace):
        listener.on_no_face_detected()
    elif isinstance(outcome, DetectionError):
        listener.on_error(outcome.message)
    else:
        raise TypeError(f"Unknown outcome: {outcome!r}")


_LANDMARKS = "landmarks"
_EMPTY = "empty"
_ERROR = "error"
_STOP = "stop"

Report = Tuple[str, int, Any]


class _FrameReports:
    """Callbacks handed to the landmark source for one admitted frame; tags every report with its ticket."""

    def __init__(self, reports: "queue.Queue[Report]", ticket: int):
        self._reports = reports
        self.ticket = ticket

    def on_landmarks(self, observation: LandmarkObservation) -> None:
        self._reports.put((_LANDMARKS, self.ticket, observation))

    def on_empty(self) -> None:
        self._reports.put((_EMPTY, self.ticket, None))

    def on_error(self, error: str) -> None:
        self._reports.put((_ERROR, self.ticket, error))


class HeadPoseDetector:
    JOIN_TIMEOUT_SEC = 2.0

    def __init__(
        self,
        listener: HeadPoseListener,
        config: Optional[HeadPoseConfig] = None,
        landmark_source: Optional[LandmarkSource] = None,
        *,
        reference_model: Optional[ReferenceModel] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or HeadPoseConfig()
        self._listener = listener

        # Two-phase init: the model is loaded here, before any frame is accepted.
        self.reference_model = reference_model or ReferenceModelStore(self.config.model_path).load()

        self._stabilizer = TemporalStabilizer(
            self.reference_model,
            PoseSolver(self.config.intrinsics(), max_reprojection_error=self.config.max_reprojection_error),
            self.config.thresholds(),
            throttle_ms=self.config.throttle_ms,
            clock=clock,
        )
        self._gate = FrameDispatchGate()

        if landmark_source is None:
            from headpose.mediapipe.face_landmarker import FaceLandmarkerSource
            landmark_source = FaceLandmarkerSource.from_config(self.config)
        self._source = landmark_source

        self._reports: "queue.Queue[Report]" = queue.Queue()
        self._stop_event = threading.Event()
        self._worker = threading.Thread(target=self._work_loop, name="headpose-worker", daemon=True)
        self._worker.start()

        log.info(f"HeadPoseDetector started ({self.reference_model.count} model points, "
                 f"throttle {self.config.throttle_ms:.0f} ms)")

    # --- Capture side ---

    def process_frame(self, frame: Union[Frame, np.ndarray], is_front_camera: bool = True) -> bool:
        """
        Offer a frame. Returns False if it was dropped (busy or shut down);
        a dropped frame is released immediately and never reaches the listener.
        """
        if not isinstance(frame, Frame):
            frame = Frame(image=frame, is_front_camera=is_front_camera)

        ticket = self._gate.admit(frame)
        if ticket is None:
            return False

        callbacks = _FrameReports(self._reports, ticket)
        try:
            self._source.detect_async(frame, callbacks)
        except Exception as e:
            log.error(f"Error processing frame: {e}")
            try:
                frame.close()
            except Exception as close_err:
                log.warning(f"Frame release failed: {close_err}")
            callbacks.on_error(f"Failed to process image: {e}")
        return True

    # --- Pose worker ---

    def _work_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                kind, ticket, payload = self._reports.get(timeout=0.5)
            except queue.Empty:
                continue
            if self._stop_event.is_set():
                break
            if ticket != self._gate.in_flight:
                # Second answer for a frame that already got its outcome
                log.debug("Ignoring stale %s report for frame %d", kind, ticket)
                continue

            try:
                snapshot = self._stabilizer.state
                outcome = self._resolve(kind, payload)
                if self._stop_event.is_set():
                    self._stabilizer.restore(snapshot)
                    log.debug("Discarding %s outcome after shutdown", kind)
                    continue
                try:
                    dispatch_outcome(self._listener, outcome)
                except Exception as e:
                    log.error(f"Listener raised on {type(outcome).__name__}: {e}", exc_info=True)
            finally:
                self._gate.release(ticket)

    def _resolve(self, kind: str, payload: Any) -> PoseOutcome:
        if kind == _EMPTY:
            return NO_FACE
        if kind == _ERROR:
            return DetectionError(str(payload))
        try:
            return self._stabilizer.update(payload)
        except Exception as e:
            log.error(f"Error in head pose calculation: {e}", exc_info=True)
            return DetectionError(f"Head pose calculation failed: {e}")

    # --- Control ---

    @property
    def is_processing(self) -> bool:
        return self._gate.is_busy

    @property
    def is_running(self) -> bool:
        return self._gate.state is not GateState.CLOSED

    @property
    def dropped_frames(self) -> int:
        return self._gate.dropped

    @property
    def state(self) -> StabilizedState:
        return self._stabilizer.state

    def update_thresholds(self, thresholds: Thresholds) -> None:
        self._stabilizer.thresholds = thresholds

    def shutdown(self) -> None:
        """Stop accepting frames, close the landmark source and stop the worker. Idempotent."""
        if self._stop_event.is_set():
            return
        self._gate.close()
        try:
            self._source.close()
        except Exception as e:
            log.warning(f"Landmark source close failed: {e}")
        self._stop_event.set()
        self._reports.put((_STOP, 0, None))
        if self._worker is not threading.current_thread():
            self._worker.join(timeout=self.JOIN_TIMEOUT_SEC)
        log.info("HeadPoseDetector stopped")

    def __enter__(self) -> "HeadPoseDetector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
