import logging
from typing import Optional

import cv2
import numpy as np

from headpose.core.types import CameraIntrinsics, LandmarkObservation, PoseHypothesis, ReferenceModel

log = logging.getLogger(__name__)


class PoseSolver:
    """
    Perspective-n-Point solve of the reference model against observed landmarks.

    cv2.SOLVEPNP_ITERATIVE seeds with a DLT/homography estimate and refines
    with Levenberg-Marquardt. Camera matrix and distortion are built once.

    With max_reprojection_error set (RMS pixels) a solve whose residual exceeds
    it counts as not converged. Without it the residual is not computed.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        flags: int = cv2.SOLVEPNP_ITERATIVE,
        max_reprojection_error: Optional[float] = None,
    ):
        self.intrinsics = intrinsics
        self.flags = flags
        self.max_reprojection_error = max_reprojection_error
        self.camera_matrix = intrinsics.camera_matrix()
        self.dist_coeffs = intrinsics.dist_coeffs()

    def solve(self, model: ReferenceModel, observation: LandmarkObservation) -> Optional[PoseHypothesis]:
        """
        Returns None when the solver fails or yields a degenerate rotation.
        A count mismatch between model and observation is a caller error (ValueError).
        """
        if observation.count != model.count:
            raise ValueError(
                f"Correspondence mismatch: {observation.count} landmarks for {model.count} model points"
            )

        object_points = model.object_points()
        image_points = observation.image_points()

        try:
            success, rvec, tvec = cv2.solvePnP(
                object_points, image_points,
                self.camera_matrix, self.dist_coeffs,
                flags=self.flags,
            )
        except cv2.error as e:
            log.warning("solvePnP rejected input (%d points): %s", model.count, e)
            return None

        if not success or rvec is None or tvec is None:
            log.warning("solvePnP failed")
            return None

        rvec = np.asarray(rvec, dtype=np.float64).reshape(-1)
        tvec = np.asarray(tvec, dtype=np.float64).reshape(-1)
        if rvec.size != 3 or tvec.size != 3 or not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
            log.warning("solvePnP returned a degenerate pose: rvec=%s tvec=%s", rvec, tvec)
            return None

        rmat, _ = cv2.Rodrigues(rvec)
        if rmat is None or rmat.shape != (3, 3):
            log.warning("Rotation matrix has invalid shape: %s", None if rmat is None else rmat.shape)
            return None

        error = None
        if self.max_reprojection_error is not None:
            error = self._reprojection_error(object_points, image_points, rvec, tvec)
            if error > self.max_reprojection_error:
                log.warning("Reprojection error %.2f px above tolerance %.2f px", error, self.max_reprojection_error)
                return None

        return PoseHypothesis(
            rotation_vector=rvec,
            translation_vector=tvec,
            rotation_matrix=rmat,
            reprojection_error=error,
        )

    def _reprojection_error(self, object_points, image_points, rvec, tvec) -> float:
        """RMS pixel distance between observed and reprojected landmarks."""
        projected, _ = cv2.projectPoints(object_points, rvec, tvec, self.camera_matrix, self.dist_coeffs)
        diff = projected.reshape(-1, 2) - image_points
        return float(np.sqrt(np.mean(np.sum(diff * diff, axis=1))))
