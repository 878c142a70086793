import logging
import os
import threading
import time
from typing import Any, Dict, Optional, Sequence

import cv2
import mediapipe as mp
import numpy as np

from headpose.core.config import HeadPoseConfig
from headpose.core.types import Frame, LandmarkObservation

log = logging.getLogger(__name__)

BaseOptions = mp.tasks.BaseOptions
FaceLandmarker = mp.tasks.vision.FaceLandmarker
FaceLandmarkerOptions = mp.tasks.vision.FaceLandmarkerOptions
VisionRunningMode = mp.tasks.vision.RunningMode


class FaceLandmarkerSource:
    """
    Wrapper for the MediaPipe Tasks FaceLandmarker in LIVE_STREAM mode.

    detect_async() returns as soon as the frame is submitted; MediaPipe calls
    back on its own thread, and the result is forwarded to the callbacks given
    with the frame. The caller keeps at most one frame in flight.
    """

    def __init__(
        self,
        model_path: str,
        *,
        max_num_faces: int = 1,
        min_face_detection_confidence: float = 0.5,
        min_face_presence_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        landmark_indices: Sequence[int] = (),
    ):
        if not os.path.exists(model_path):
            raise FileNotFoundError(f"MediaPipe model not found: {model_path}")

        self.landmark_indices = tuple(landmark_indices)
        self._lock = threading.Lock()
        self._pending: Dict[int, Any] = {}
        self._last_ts_ms = 0
        self._closed = False

        options = FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=model_path),
            running_mode=VisionRunningMode.LIVE_STREAM,
            num_faces=max_num_faces,
            min_face_detection_confidence=min_face_detection_confidence,
            min_face_presence_confidence=min_face_presence_confidence,
            min_tracking_confidence=min_tracking_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
            result_callback=self._on_result,
        )
        self._landmarker = FaceLandmarker.create_from_options(options)
        log.info("FaceLandmarker created (%s, faces=%d)", model_path, max_num_faces)

    @classmethod
    def from_config(cls, config: HeadPoseConfig) -> "FaceLandmarkerSource":
        return cls(
            config.landmarker_model_path,
            max_num_faces=config.max_num_faces,
            min_face_detection_confidence=config.face_detection_confidence,
            min_face_presence_confidence=config.face_presence_confidence,
            min_tracking_confidence=config.face_tracking_confidence,
            landmark_indices=config.landmark_indices,
        )

    def _next_timestamp_ms(self, requested: Optional[int]) -> int:
        # LIVE_STREAM rejects non-increasing timestamps
        ts = int(requested) if requested is not None else int(time.monotonic() * 1000)
        ts = max(ts, self._last_ts_ms + 1)
        self._last_ts_ms = ts
        return ts

    def detect_async(self, frame: Frame, callbacks) -> None:
        """
        Submit one frame and release it. Only a failed submission raises;
        a failed release is logged.
        """
        try:
            self._submit(frame, callbacks)
        finally:
            try:
                frame.close()
            except Exception as e:
                log.warning(f"Frame release failed: {e}")

    def _submit(self, frame: Frame, callbacks) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("FaceLandmarker is closed")
            ts = self._next_timestamp_ms(frame.timestamp_ms)
            self._pending[ts] = callbacks

        try:
            image = frame.image
            if frame.is_front_camera:
                image = cv2.flip(image, 1)
            # MediaPipe expects RGB; OpenCV frames are BGR
            rgb = np.ascontiguousarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))
            mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

            self._landmarker.detect_async(mp_image, ts)
        except Exception:
            with self._lock:
                self._pending.pop(ts, None)
            raise

    def _take_callbacks(self, timestamp_ms: int):
        with self._lock:
            callbacks = self._pending.pop(timestamp_ms, None)
            # Results come back in timestamp order; older entries will never be answered
            for ts in [t for t in self._pending if t < timestamp_ms]:
                del self._pending[ts]
            return callbacks

    def _on_result(self, result, output_image, timestamp_ms: int) -> None:
        callbacks = self._take_callbacks(timestamp_ms)
        if callbacks is None:
            return
        try:
            faces = result.face_landmarks or []
            observation = None
            if faces:
                observation = self.to_observation(faces[0], output_image.width, output_image.height)
        except Exception as e:
            log.error(f"Landmark conversion failed: {e}", exc_info=True)
            callbacks.on_error(f"Landmark conversion failed: {e}")
            return

        if observation is None:
            callbacks.on_empty()
        else:
            callbacks.on_landmarks(observation)

    def to_observation(self, landmarks, width: int, height: int) -> Optional[LandmarkObservation]:
        """
        First face -> observation, reordered through landmark_indices when set.
        None if the face lacks any requested index.
        """
        if self.landmark_indices:
            if max(self.landmark_indices) >= len(landmarks):
                return None
            selected = [landmarks[i] for i in self.landmark_indices]
        else:
            selected = list(landmarks)

        if not selected:
            return None
        points = tuple((float(lm.x), float(lm.y)) for lm in selected)
        return LandmarkObservation(points=points, image_width=int(width), image_height=int(height))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._pending.clear()
        self._landmarker.close()
        log.info("FaceLandmarker closed")
