import os
import threading
from types import SimpleNamespace

import pytest

pytest.importorskip("mediapipe")

import numpy as np  # noqa: E402

from headpose.core.types import Frame  # noqa: E402
from headpose.mediapipe.face_landmarker import FaceLandmarkerSource  # noqa: E402

from conftest import RecordingListener  # noqa: E402

# ── Fakes ──


def _landmarks(n: int):
    return [SimpleNamespace(x=i / 1000.0, y=i / 2000.0, z=0.0) for i in range(n)]


class CallbackRecorder(RecordingListener):
    def on_landmarks(self, observation):
        self._record("landmarks", observation)

    def on_empty(self):
        self._record("empty")


def _bare_source(indices=()) -> FaceLandmarkerSource:
    # Skip __init__: no .task bundle needed to test result conversion
    src = FaceLandmarkerSource.__new__(FaceLandmarkerSource)
    src.landmark_indices = tuple(indices)
    src._lock = threading.Lock()
    src._pending = {}
    src._last_ts_ms = 0
    src._closed = False
    return src


class DeferredGraph:
    """Stands in for the MediaPipe graph: records submissions, answers only when told."""

    def __init__(self):
        self.timestamps = []

    def detect_async(self, image, timestamp_ms):
        self.timestamps.append(timestamp_ms)

    def close(self):
        pass


def _frame(ts, on_release=None) -> Frame:
    return Frame(image=np.zeros((4, 4, 3), dtype=np.uint8), timestamp_ms=ts, on_release=on_release)


# ── Tests ──


class TestConstruction:
    def test_missing_model_bundle(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FaceLandmarkerSource(str(tmp_path / "missing.task"))


class TestToObservation:
    def test_positional(self):
        obs = _bare_source().to_observation(_landmarks(10), 640, 480)
        assert obs.count == 10
        assert obs.points[3] == (0.003, 0.0015)
        assert (obs.image_width, obs.image_height) == (640, 480)

    def test_index_selection_keeps_order(self):
        obs = _bare_source((5, 1, 3)).to_observation(_landmarks(10), 640, 480)
        assert obs.points == ((0.005, 0.0025), (0.001, 0.0005), (0.003, 0.0015))

    def test_missing_index_is_no_observation(self):
        assert _bare_source((1, 478)).to_observation(_landmarks(468), 640, 480) is None


class TestResultCallback:
    def _result(self, faces):
        return SimpleNamespace(face_landmarks=faces)

    def _image(self):
        return SimpleNamespace(width=1280, height=960)

    def test_face_reported_as_landmarks(self):
        src = _bare_source((0, 1))
        src._pending[1] = rec = CallbackRecorder()
        src._on_result(self._result([_landmarks(3)]), self._image(), 1)
        kind, obs = rec.events[0]
        assert kind == "landmarks"
        assert obs.count == 2
        assert obs.image_width == 1280

    def test_no_face_reported_as_empty(self):
        src = _bare_source()
        src._pending[1] = rec = CallbackRecorder()
        src._on_result(self._result([]), self._image(), 1)
        assert rec.events == [("empty", None)]

    def test_conversion_failure_reported_as_error(self):
        src = _bare_source()
        src._pending[1] = rec = CallbackRecorder()
        src._on_result(self._result([[SimpleNamespace(x="?", y=None)]]), self._image(), 1)
        assert rec.events[0][0] == "error"

    def test_timestamps_strictly_increase(self):
        src = _bare_source()
        assert src._next_timestamp_ms(100) == 100
        assert src._next_timestamp_ms(100) == 101
        assert src._next_timestamp_ms(50) == 102


class TestSubmission:
    def test_failed_release_after_submit_does_not_raise(self, caplog):
        src = _bare_source()
        src._landmarker = graph = DeferredGraph()
        rec = CallbackRecorder()

        def broken_release():
            raise RuntimeError("buffer already returned")

        with caplog.at_level("WARNING"):
            src.detect_async(_frame(100, broken_release), rec)

        assert graph.timestamps == [100]
        assert "buffer already returned" in caplog.text
        assert rec.events == []

        # The frame's own result still reaches its callbacks
        src._on_result(SimpleNamespace(face_landmarks=[]), SimpleNamespace(width=4, height=4), 100)
        assert rec.events == [("empty", None)]

    def test_results_route_to_their_own_frame(self):
        src = _bare_source()
        src._landmarker = DeferredGraph()
        first, second = CallbackRecorder(), CallbackRecorder()
        image = SimpleNamespace(width=4, height=4)

        src.detect_async(_frame(100), first)
        src.detect_async(_frame(200), second)
        src._on_result(SimpleNamespace(face_landmarks=[]), image, 100)

        assert first.events == [("empty", None)]
        assert second.events == []

        src._on_result(SimpleNamespace(face_landmarks=[]), image, 200)
        assert second.events == [("empty", None)]

    def test_duplicate_result_is_dropped(self):
        src = _bare_source()
        src._landmarker = DeferredGraph()
        rec = CallbackRecorder()
        image = SimpleNamespace(width=4, height=4)

        src.detect_async(_frame(100), rec)
        src._on_result(SimpleNamespace(face_landmarks=[]), image, 100)
        src._on_result(SimpleNamespace(face_landmarks=[]), image, 100)
        assert rec.events == [("empty", None)]

    def test_failed_submission_raises_and_forgets_callbacks(self):
        class RejectingGraph(DeferredGraph):
            def detect_async(self, image, timestamp_ms):
                raise ValueError("timestamp must be monotonically increasing")

        src = _bare_source()
        src._landmarker = RejectingGraph()
        released = []
        with pytest.raises(ValueError):
            src.detect_async(_frame(100, lambda: released.append(True)), CallbackRecorder())
        assert released == [True]
        assert src._pending == {}

    def test_closed_source_refuses_frames(self):
        src = _bare_source()
        src._landmarker = DeferredGraph()
        src.close()
        with pytest.raises(RuntimeError):
            src.detect_async(_frame(100), CallbackRecorder())


@pytest.mark.hardware
def test_live_landmarker_round_trip():
    """
    Needs a real FaceLandmarker bundle:
      DS_RUN_HARDWARE_TESTS=1 HEADPOSE_LANDMARKER=models/face_landmarker.task pytest -k live
    """
    if str(os.getenv("DS_RUN_HARDWARE_TESTS", "0")).strip().lower() not in ("1", "true", "yes", "on"):
        pytest.skip("Hardware tests disabled. Set DS_RUN_HARDWARE_TESTS=1 to run.")

    src = FaceLandmarkerSource(os.getenv("HEADPOSE_LANDMARKER", "models/face_landmarker.task"))
    rec = CallbackRecorder()
    try:
        src.detect_async(Frame(image=np.zeros((480, 640, 3), dtype=np.uint8)), rec)
        assert rec.wait_for(1, timeout=5.0)
        assert rec.events[0][0] == "empty"
    finally:
        src.close()
