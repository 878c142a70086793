from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from headpose.core.reference_model import DEFAULT_MODEL_PATH
from headpose.core.types import CameraIntrinsics, Range, Thresholds
from headpose.utils.config_utils import as_float, as_index_list, as_int, as_range, get_section
from headpose.utils.load_detector_config import load_yaml_section

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/head_pose.yaml"

# MediaPipe face mesh: nose tip, chin, eye outer corners, mouth corners.
# Matches the order of the packaged assets/model.txt.
DEFAULT_LANDMARK_INDICES: Tuple[int, ...] = (1, 152, 33, 263, 61, 291)

DEFAULT_FACE_DETECTION_CONFIDENCE = 0.5
DEFAULT_FACE_TRACKING_CONFIDENCE = 0.5
DEFAULT_FACE_PRESENCE_CONFIDENCE = 0.5
DEFAULT_NUM_FACES = 1


@dataclass(frozen=True)
class HeadPoseConfig:
    # Angle ranges (degrees, inclusive) for the "in position" verdict
    yaw_range: Range = (35.0, 49.0)
    pitch_range: Range = (-158.0, -154.0)
    roll_range: Range = (90.0, 102.0)

    # Pinhole intrinsics
    focal_length: float = 1000.0
    center_x: float = 640.0
    center_y: float = 480.0

    # Forwarded to the landmark source
    face_detection_confidence: float = DEFAULT_FACE_DETECTION_CONFIDENCE
    face_tracking_confidence: float = DEFAULT_FACE_TRACKING_CONFIDENCE
    face_presence_confidence: float = DEFAULT_FACE_PRESENCE_CONFIDENCE
    max_num_faces: int = DEFAULT_NUM_FACES
    landmarker_model_path: str = "models/face_landmarker.task"
    landmark_indices: Tuple[int, ...] = DEFAULT_LANDMARK_INDICES

    throttle_ms: float = 50.0
    # RMS pixels; None disables the residual check
    max_reprojection_error: Optional[float] = None
    model_path: str = str(DEFAULT_MODEL_PATH)

    def thresholds(self) -> Thresholds:
        return Thresholds(yaw_range=self.yaw_range, pitch_range=self.pitch_range, roll_range=self.roll_range)

    def intrinsics(self) -> CameraIntrinsics:
        return CameraIntrinsics(focal_length=self.focal_length, center_x=self.center_x, center_y=self.center_y)


def _read_range(section: Dict[str, Any], key: str, default: Range) -> Range:
    raw = section.get(key)
    lo, hi = as_range(raw, default)
    if isinstance(raw, (list, tuple)) and len(raw) == 2 and as_float(raw[0], lo) > as_float(raw[1], hi):
        log.warning(f"{key} bounds {list(raw)} are reversed; using [{lo}, {hi}]")
    return (lo, hi)


def _read_tolerance(section: Dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    raw = section.get(key)
    if raw is None:
        return default
    value = as_float(raw, -1.0)
    if value <= 0:
        log.warning(f"Invalid {key} {raw!r}; residual check disabled")
        return None
    return value


def load_head_pose_config(path: str = DEFAULT_CONFIG_PATH) -> HeadPoseConfig:
    """Read the `head_pose` section; every missing or bad value falls back to its default."""
    d = HeadPoseConfig()
    root = load_yaml_section(path, "head_pose")
    if not root:
        log.info(f"No head_pose section in '{path}'; using defaults")
        return d

    thresholds = get_section(root, "thresholds")
    camera = get_section(root, "camera")
    landmarker = get_section(root, "landmarker")
    stabilizer = get_section(root, "stabilizer")
    solver = get_section(root, "solver")
    model = get_section(root, "model")

    indices = d.landmark_indices
    if "landmark_indices" in landmarker:
        raw = landmarker.get("landmark_indices")
        parsed = as_index_list(raw) if raw is not None else ()
        if parsed is None:
            log.warning(f"Invalid landmark_indices {raw!r}; using defaults")
        else:
            indices = parsed

    return HeadPoseConfig(
        yaw_range=_read_range(thresholds, "yaw_deg", d.yaw_range),
        pitch_range=_read_range(thresholds, "pitch_deg", d.pitch_range),
        roll_range=_read_range(thresholds, "roll_deg", d.roll_range),
        focal_length=as_float(camera.get("focal_length"), d.focal_length),
        center_x=as_float(camera.get("center_x"), d.center_x),
        center_y=as_float(camera.get("center_y"), d.center_y),
        face_detection_confidence=as_float(landmarker.get("min_face_detection_confidence"), d.face_detection_confidence),
        face_tracking_confidence=as_float(landmarker.get("min_face_tracking_confidence"), d.face_tracking_confidence),
        face_presence_confidence=as_float(landmarker.get("min_face_presence_confidence"), d.face_presence_confidence),
        max_num_faces=max(1, as_int(landmarker.get("max_num_faces"), d.max_num_faces)),
        landmarker_model_path=str(landmarker.get("model_path") or d.landmarker_model_path),
        landmark_indices=indices,
        throttle_ms=max(0.0, as_float(stabilizer.get("throttle_ms"), d.throttle_ms)),
        max_reprojection_error=_read_tolerance(solver, "max_reprojection_error_px", d.max_reprojection_error),
        model_path=str(model.get("path") or d.model_path),
    )
