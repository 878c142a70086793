from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Union

import numpy as np

Point2 = Tuple[float, float]
Point3 = Tuple[float, float, float]
Range = Tuple[float, float]


@dataclass(frozen=True)
class ReferenceModel:
    """
    Fixed 3D facial landmark template.
    Point i pairs with landmark i of every observation.
    """
    points: Tuple[Point3, ...]

    @classmethod
    def placeholder(cls) -> "ReferenceModel":
        return cls(points=((0.0, 0.0, 0.0),))

    @property
    def count(self) -> int:
        return len(self.points)

    def object_points(self) -> np.ndarray:
        return np.array(self.points, dtype=np.float64).reshape(-1, 3)


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole camera, shared focal length for x/y, no lens distortion."""
    focal_length: float = 1000.0
    center_x: float = 640.0
    center_y: float = 480.0

    def camera_matrix(self) -> np.ndarray:
        return np.array([
            [self.focal_length, 0.0, self.center_x],
            [0.0, self.focal_length, self.center_y],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    @staticmethod
    def dist_coeffs() -> np.ndarray:
        return np.zeros((4, 1), dtype=np.float64)


@dataclass(frozen=True)
class LandmarkObservation:
    """
    Landmarks of one face in normalized [0, 1] image coordinates,
    plus the pixel size of the image they came from.
    """
    points: Tuple[Point2, ...]
    image_width: int
    image_height: int

    @property
    def count(self) -> int:
        return len(self.points)

    def truncated(self, count: int) -> "LandmarkObservation":
        if count >= self.count:
            return self
        return LandmarkObservation(self.points[:count], self.image_width, self.image_height)

    def image_points(self) -> np.ndarray:
        """Landmarks de-normalized to pixel coordinates, shape (N, 2)."""
        pts = np.array(self.points, dtype=np.float64).reshape(-1, 2)
        return pts * np.array([float(self.image_width), float(self.image_height)])


@dataclass(frozen=True, eq=False)
class PoseHypothesis:
    rotation_vector: np.ndarray
    translation_vector: np.ndarray
    rotation_matrix: np.ndarray
    reprojection_error: Optional[float] = None


@dataclass(frozen=True)
class EulerAngles:
    """Degrees."""
    pitch: float
    yaw: float
    roll: float


@dataclass(frozen=True)
class Thresholds:
    """Inclusive [min, max] ranges in degrees."""
    yaw_range: Range = (35.0, 49.0)
    pitch_range: Range = (-158.0, -154.0)
    roll_range: Range = (90.0, 102.0)


@dataclass(frozen=True)
class StabilizedState:
    angles: Optional[EulerAngles] = None
    is_in_position: bool = False
    accepted_at: Optional[float] = None

    @property
    def has_cache(self) -> bool:
        return self.angles is not None


# --- Pipeline outcomes ---

@dataclass(frozen=True)
class HeadPoseResult:
    pitch: float
    yaw: float
    roll: float
    is_in_position: bool

    @classmethod
    def from_angles(cls, angles: EulerAngles, is_in_position: bool) -> "HeadPoseResult":
        return cls(angles.pitch, angles.yaw, angles.roll, bool(is_in_position))


@dataclass(frozen=True)
class NoFace:
    pass


@dataclass(frozen=True)
class DetectionError:
    message: str


NO_FACE = NoFace()

PoseOutcome = Union[HeadPoseResult, NoFace, DetectionError]


@dataclass
class Frame:
    """
    A camera frame handed to the detector.
    close() runs the release hook once; the gate calls it for dropped frames,
    the landmark source after it has consumed the pixels.
    """
    image: np.ndarray
    is_front_camera: bool = True
    timestamp_ms: Optional[int] = None
    on_release: Optional[Callable[[], None]] = None
    _closed: bool = field(default=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.on_release is not None:
            self.on_release()
