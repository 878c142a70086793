import threading
import time
from typing import List, Optional, Tuple

import cv2
import numpy as np
import pytest

from headpose.core.euler import euler_angles_to_rotation_matrix
from headpose.core.reference_model import DEFAULT_MODEL_PATH, load_model_points
from headpose.core.types import CameraIntrinsics, HeadPoseResult, LandmarkObservation, ReferenceModel

IMAGE_W = 1280
IMAGE_H = 960


def project_pose(
    model: ReferenceModel,
    pitch: float,
    yaw: float,
    roll: float,
    tvec=(0.0, 0.0, 600.0),
    intrinsics: Optional[CameraIntrinsics] = None,
) -> LandmarkObservation:
    """Synthetic landmarks: the model seen from a known pose, normalized to the image size."""
    intrinsics = intrinsics or CameraIntrinsics()
    rvec, _ = cv2.Rodrigues(euler_angles_to_rotation_matrix(pitch, yaw, roll))
    pts, _ = cv2.projectPoints(
        model.object_points(), rvec, np.array(tvec, dtype=np.float64),
        intrinsics.camera_matrix(), intrinsics.dist_coeffs(),
    )
    pts = pts.reshape(-1, 2) / np.array([IMAGE_W, IMAGE_H], dtype=np.float64)
    return LandmarkObservation(
        points=tuple((float(x), float(y)) for x, y in pts),
        image_width=IMAGE_W,
        image_height=IMAGE_H,
    )


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class RecordingListener:
    def __init__(self):
        self.events: List[Tuple[str, object]] = []
        self._cond = threading.Condition()

    def _record(self, kind, payload=None):
        with self._cond:
            self.events.append((kind, payload))
            self._cond.notify_all()

    def on_head_pose_detected(self, result: HeadPoseResult) -> None:
        self._record("pose", result)

    def on_no_face_detected(self) -> None:
        self._record("no_face")

    def on_error(self, error: str) -> None:
        self._record("error", error)

    def wait_for(self, count: int, timeout: float = 2.0) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: len(self.events) >= count, timeout=timeout)


@pytest.fixture
def model() -> ReferenceModel:
    return load_model_points(DEFAULT_MODEL_PATH)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()
