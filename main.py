import os
import sys
import logging
import threading
import time

# 1. GLOBAL LOGGING SETUP
# -----------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

# Silence specific noisy loggers
logging.getLogger("absl").setLevel(logging.ERROR)

import cv2  # noqa: E402
import numpy as np  # noqa: E402

from headpose.core.config import DEFAULT_CONFIG_PATH, load_head_pose_config  # noqa: E402
from headpose.core.detector import HeadPoseDetector  # noqa: E402
from headpose.core.types import HeadPoseResult  # noqa: E402

log = logging.getLogger("headpose.demo")


class LatestResultListener:
    """Keeps the last outcome for the HUD. Called from the pose worker thread."""

    def __init__(self):
        self._lock = threading.Lock()
        self.status = "waiting"
        self.result = None

    def on_head_pose_detected(self, result: HeadPoseResult) -> None:
        with self._lock:
            self.result = result
            self.status = "IN POSITION" if result.is_in_position else "ADJUST HEAD"

    def on_no_face_detected(self) -> None:
        with self._lock:
            self.result = None
            self.status = "no face"

    def on_error(self, error: str) -> None:
        log.error(f"Detection error: {error}")
        with self._lock:
            self.status = "error"

    def snapshot(self):
        with self._lock:
            return self.status, self.result


def _put_hud(image_bgr: np.ndarray, lines: list) -> None:
    y = 22
    for line in lines:
        cv2.putText(image_bgr, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 0), 3, cv2.LINE_AA)
        cv2.putText(image_bgr, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1, cv2.LINE_AA)
        y += 22


def run() -> int:
    config = load_head_pose_config(os.getenv("HEADPOSE_CONFIG", DEFAULT_CONFIG_PATH))
    headless = str(os.getenv("DS_HEADLESS", "0")).strip().lower() in ("1", "true", "yes", "on")
    camera_index = int(os.getenv("DS_CAMERA_INDEX", "0"))

    cam = cv2.VideoCapture(camera_index)
    if not cam.isOpened():
        log.critical(f"Camera {camera_index} failed to open")
        return 1

    listener = LatestResultListener()
    detector = HeadPoseDetector(listener, config)

    window = "Head pose (q/esc quit)"
    fps_ema = 0.0
    alpha = 0.1
    last_t = time.perf_counter()
    last_log = 0.0

    try:
        while True:
            ok, frame_bgr = cam.read()
            if not ok or frame_bgr is None:
                continue

            # The detector releases or consumes its own copy
            detector.process_frame(frame_bgr.copy(), is_front_camera=True)

            now = time.perf_counter()
            dt = max(1e-6, now - last_t)
            last_t = now
            fps_ema = (1.0 / dt) if fps_ema <= 0 else (1 - alpha) * fps_ema + alpha * (1.0 / dt)

            status, result = listener.snapshot()
            if headless:
                if result is not None and now - last_log >= 1.0:
                    last_log = now
                    log.info(f"P:{result.pitch:.1f} Y:{result.yaw:.1f} R:{result.roll:.1f} {status}")
                continue

            lines = [f"status: {status}", f"fps: {fps_ema:0.1f}", f"dropped: {detector.dropped_frames}"]
            if result is not None:
                lines.append(f"P:{result.pitch:.1f} Y:{result.yaw:.1f} R:{result.roll:.1f}")
            display = cv2.flip(frame_bgr, 1)
            _put_hud(display, lines)

            cv2.imshow(window, display)
            key = cv2.waitKey(1) & 0xFF
            if key in (27, ord("q")):
                break
    except KeyboardInterrupt:
        log.info("Interrupted")
    finally:
        detector.shutdown()
        cam.release()
        if not headless:
            cv2.destroyAllWindows()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(run())
    except Exception as e:
        logging.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
