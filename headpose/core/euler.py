import math

import numpy as np

from headpose.core.types import EulerAngles

SINGULAR_EPS = 1e-6


def rotation_matrix_to_euler_angles(R) -> EulerAngles:
    """
    Extract pitch, yaw, roll (degrees) from a 3x3 rotation matrix.

    sy = sqrt(R00^2 + R10^2) tells how close we are to gimbal lock.
    Regular case:
        pitch = atan2(R21, R22), yaw = atan2(-R20, sy), roll = atan2(R10, R00)
    Singular case (sy <= 1e-6, yaw near +/-90):
        pitch = atan2(-R12, R11), yaw = atan2(-R20, sy), roll = 0

    The in-position thresholds are tuned against exactly this convention.
    Raises ValueError if R is not 3x3.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Rotation matrix has invalid shape: {R.shape}")

    sy = math.sqrt(R[0, 0] * R[0, 0] + R[1, 0] * R[1, 0])

    if sy > SINGULAR_EPS:
        pitch = math.atan2(R[2, 1], R[2, 2])
        yaw = math.atan2(-R[2, 0], sy)
        roll = math.atan2(R[1, 0], R[0, 0])
    else:
        pitch = math.atan2(-R[1, 2], R[1, 1])
        yaw = math.atan2(-R[2, 0], sy)
        roll = 0.0

    return EulerAngles(
        pitch=math.degrees(pitch),
        yaw=math.degrees(yaw),
        roll=math.degrees(roll),
    )


def euler_angles_to_rotation_matrix(pitch: float, yaw: float, roll: float) -> np.ndarray:
    """Inverse of the regular branch: R = Rz(roll) @ Ry(yaw) @ Rx(pitch), degrees in."""
    x, y, z = (math.radians(a) for a in (pitch, yaw, roll))
    cx, sx = math.cos(x), math.sin(x)
    cy, sy = math.cos(y), math.sin(y)
    cz, sz = math.cos(z), math.sin(z)

    rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]], dtype=np.float64)
    ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]], dtype=np.float64)
    rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]], dtype=np.float64)
    return rz @ ry @ rx
