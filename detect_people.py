"""People detection demo that drives a Firmata output pin on detection.

Frames are read from a camera, a video file or an image, a Darknet (YOLO)
network finds people in them, and the first confident detection while the
actuator is idle asks the background worker to toggle the configured pin.
"""

import argparse
import logging
import queue
import signal
import sys
from typing import List, Optional, Sequence

import cv2

from actuator.link import DEFAULT_PORT_PATTERN, ActuatorNotFoundError, FirmataLink
from actuator.worker import ActuationConfig, ActuationWorker
from detector.camera import CameraManager
from detector.errors import CaptureOpenError, ModelLoadError
from detector.pipeline import YoloDetector, load_class_names
from detector.trigger import PERSON_CLASS, ActuationGate, GateConfig
from detector.ui import EXIT_KEYS, DetectorUI

logger = logging.getLogger("detect_people")

ABOUT = (
    "This sample uses You only look once (YOLO)-Detector (https://arxiv.org/abs/1612.08242) "
    "to detect people on camera/video/image and toggles a pin on a Firmata board.\n"
    "Models can be downloaded here: https://pjreddie.com/darknet/yolo/\n"
    "Class names can be downloaded here: https://github.com/pjreddie/darknet/tree/master/data\n"
)

EXIT_OK = 0
EXIT_NO_ACTUATOR = 1
EXIT_SETUP_FAILED = -1

FRAME_SIZE = (320, 240)


class PeopleDetector:
    """フレーム取得・推論・描画のループを回し、検出時にアクチュエーションを依頼する。

    Args:
        camera: フレームの取得元。
        detector: 推論を行う検出器。
        gate: アクチュエーション要求の可否を判断するゲート。
        ui: 描画と表示を行うUI。
        link: マイコンへの接続。Noneの場合はアクチュエータなしで動作する。
        worker: アクチュエーションを実行するワーカー。
        exit_on_actuator_loss: 接続が失われたときにループを終了するかどうか。
    """

    def __init__(
        self,
        camera: CameraManager,
        detector: YoloDetector,
        gate: ActuationGate,
        ui: DetectorUI,
        link: Optional[FirmataLink] = None,
        worker: Optional[ActuationWorker] = None,
        exit_on_actuator_loss: bool = False,
    ) -> None:
        self.camera = camera
        self.detector = detector
        self.gate = gate
        self.ui = ui
        self.link = link
        self.worker = worker
        self.exit_on_actuator_loss = exit_on_actuator_loss
        self._stop_requested = False

    def register_signal_handlers(self) -> None:
        """Stop the loop cleanly on termination signals."""

        def _handle_signal(signum, frame):  # pragma: no cover - signal handler
            logger.info("Received signal %s, shutting down", signum)
            self._stop_requested = True

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, _handle_signal)

    def process_frame(self, frame) -> None:
        """1フレーム分の推論・トリガー判定・描画を行う。"""
        try:
            detections = self.detector.detect(frame)
        except cv2.error as exc:
            logger.error("Inference failed, skipping frame: %s", exc)
            return

        for detection in detections:
            if not self.gate.qualifies(detection):
                continue
            _, _, width, height = detection.box
            logger.debug("Width: %.1f\tHeight: %.1f", width, height)
            self.ui.draw_detection(frame, detection)

        self.gate.evaluate(detections)
        self.ui.draw_status(frame, self.gate.status(), self.detector.inference_time_ms())

    def run(self) -> None:
        if self.worker is not None:
            self.worker.start()

        shown = False
        try:
            for frame in self.camera.frames():
                self.process_frame(frame)
                key = self.ui.show(frame)
                shown = True
                if key in EXIT_KEYS or self._stop_requested:
                    break
                if self.exit_on_actuator_loss and self.link is not None and not self.link.is_ready():
                    logger.error("Actuator connection lost; stopping")
                    break
            else:
                if shown:
                    logger.info("End of stream; press any key to exit")
                    self.ui.wait_for_key(lambda: self._stop_requested)
        finally:
            self.close()

    def close(self) -> None:
        """ワーカーの終了を待ってから接続・カメラ・ウィンドウを解放する。"""
        if self.worker is not None:
            self.worker.shutdown()
        if self.link is not None:
            self.link.close()
        self.camera.release()
        self.ui.close()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=ABOUT,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--cfg", default="", help="model configuration")
    parser.add_argument("--model", default="", help="model weights")
    parser.add_argument("--camera_device", type=int, default=0, help="camera device number")
    parser.add_argument("--source", default="", help="video or image for detection")
    parser.add_argument("--style", choices=("box", "line"), default="box", help="box or line style draw")
    parser.add_argument("--min_confidence", type=float, default=0.6, help="min confidence")
    parser.add_argument("--class_names", default="", help="File with class names, [PATH-TO-DARKNET]/data/coco.names")
    parser.add_argument("--target_class", type=int, default=PERSON_CLASS, help="class id that triggers the actuator")
    parser.add_argument("--port", default="", help="serial port of the Firmata board (skips discovery)")
    parser.add_argument("--port_pattern", default=DEFAULT_PORT_PATTERN, help="device name filter for port discovery")
    parser.add_argument("--pin", type=int, default=ActuationConfig.pin, help="digital output pin")
    parser.add_argument("--cooldown", type=float, default=GateConfig.cooldown_s, help="seconds before re-arming")
    parser.add_argument("--no_actuator", action="store_true", help="run without a Firmata board")
    parser.add_argument("--exit_on_actuator_loss", action="store_true", help="stop when the board is lost")
    parser.add_argument("--fullscreen", action="store_true", help="scale the display to the screen size")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


def setup_logging(debug: bool) -> None:
    """ログの設定を行う"""

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.debug)

    link: Optional[FirmataLink] = None
    if not args.no_actuator:
        candidates: Optional[List[str]] = [args.port] if args.port else None
        try:
            link = FirmataLink.connect(candidates, pattern=args.port_pattern)
        except ActuatorNotFoundError as exc:
            print(f"Error: {exc}")
            return EXIT_NO_ACTUATOR

    try:
        detector = YoloDetector(args.cfg, args.model, input_size=FRAME_SIZE, min_confidence=args.min_confidence)
        camera = CameraManager(camera_index=args.camera_device, source=args.source or None, frame_size=FRAME_SIZE)
    except ModelLoadError as exc:
        print(f"Can't load network: {exc}", file=sys.stderr)
        print(f"cfg-file:     {args.cfg}", file=sys.stderr)
        print(f"weights-file: {args.model}", file=sys.stderr)
        print("Models can be downloaded here: https://pjreddie.com/darknet/yolo/", file=sys.stderr)
        if link is not None:
            link.close()
        return EXIT_SETUP_FAILED
    except CaptureOpenError as exc:
        print(exc)
        if link is not None:
            link.close()
        return EXIT_SETUP_FAILED

    gate_config = GateConfig(
        target_class=args.target_class,
        min_confidence=args.min_confidence,
        cooldown_s=args.cooldown,
    )
    command_queue: Optional[queue.Queue] = queue.Queue() if link is not None else None
    gate = ActuationGate(command_queue, gate_config)
    worker = None
    if link is not None:
        worker = ActuationWorker(link, gate, ActuationConfig(pin=args.pin))

    ui = DetectorUI(
        style=args.style,
        class_names=load_class_names(args.class_names),
        target_class=args.target_class,
        fit_to_screen=args.fullscreen,
    )
    app = PeopleDetector(
        camera,
        detector,
        gate,
        ui,
        link=link,
        worker=worker,
        exit_on_actuator_loss=args.exit_on_actuator_loss,
    )
    app.register_signal_handlers()
    app.run()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
