import logging
import time
from typing import Callable, Optional, Union

from headpose.core.euler import rotation_matrix_to_euler_angles
from headpose.core.pose_solver import PoseSolver
from headpose.core.thresholds import is_in_position
from headpose.core.types import (
    NO_FACE,
    EulerAngles,
    HeadPoseResult,
    LandmarkObservation,
    NoFace,
    ReferenceModel,
    StabilizedState,
    Thresholds,
)

log = logging.getLogger(__name__)


class TemporalStabilizer:
    """
    Throttles pose solves and masks solver failures with the last good reading.

    - No face: NoFace, cache untouched.
    - Within the throttle window of the last accepted solve: cached angles,
      re-classified against the current thresholds, no solve.
    - Solve succeeds: classify, cache, return the fresh result.
    - Solve fails: the cached result as it was (NoFace if nothing cached).
      The acceptance timestamp is not refreshed, so retries keep the throttle cadence.

    Only ever called from the detector's pose worker.
    """

    def __init__(
        self,
        model: ReferenceModel,
        solver: PoseSolver,
        thresholds: Thresholds,
        throttle_ms: float = 50.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.model = model
        self.solver = solver
        self.thresholds = thresholds
        self.throttle_sec = max(0.0, float(throttle_ms)) / 1000.0
        self._clock = clock
        self._state = StabilizedState()

    @property
    def state(self) -> StabilizedState:
        return self._state

    def restore(self, state: StabilizedState) -> None:
        """Put back a snapshot taken from `state`, undoing any update since."""
        self._state = state

    def update(
        self,
        observation: Optional[LandmarkObservation],
        now: Optional[float] = None,
    ) -> Union[HeadPoseResult, NoFace]:
        """`now` is in seconds on the same clock as the constructor's `clock`."""
        if observation is None or observation.count == 0 or observation.count < self.model.count:
            return NO_FACE

        now = self._clock() if now is None else float(now)
        state = self._state

        if state.angles is not None and state.accepted_at is not None \
                and (now - state.accepted_at) < self.throttle_sec:
            log.debug("Throttled: reusing pose from %.1f ms ago", (now - state.accepted_at) * 1000.0)
            return HeadPoseResult.from_angles(state.angles, is_in_position(state.angles, self.thresholds))

        angles = self._solve(observation.truncated(self.model.count))
        if angles is None:
            return self._fallback()

        in_position = is_in_position(angles, self.thresholds)
        self._state = StabilizedState(angles=angles, is_in_position=in_position, accepted_at=now)
        return HeadPoseResult.from_angles(angles, in_position)

    def _solve(self, observation: LandmarkObservation) -> Optional[EulerAngles]:
        try:
            hypothesis = self.solver.solve(self.model, observation)
            if hypothesis is None:
                return None
            return rotation_matrix_to_euler_angles(hypothesis.rotation_matrix)
        except ValueError as e:
            log.warning(f"Head pose solve rejected: {e}")
            return None
        except Exception as e:
            log.error(f"Error calculating head pose: {e}", exc_info=True)
            return None

    def _fallback(self) -> Union[HeadPoseResult, NoFace]:
        state = self._state
        if state.angles is None:
            return NO_FACE
        return HeadPoseResult.from_angles(state.angles, state.is_in_position)
