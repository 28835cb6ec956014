"""Frame source utilities for the people detector."""

from __future__ import annotations

import glob
import logging
from typing import Iterator, Optional, Tuple

import cv2
import numpy as np

from .errors import CaptureOpenError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class CameraManager:
    """カメラ・動画ファイル・静止画を共通のフレーム列として扱うラッパークラス。

    Args:
        camera_index: 使用するカメラのインデックス。source が指定された場合は無視される。
        source: 動画または画像のパス。Noneの場合はカメラを使用する。
        frame_size: カメラに要求するフレームのサイズ (幅, 高さ)。
    """

    def __init__(
        self,
        camera_index: int = 0,
        source: Optional[str] = None,
        frame_size: Tuple[int, int] = (320, 240),
    ) -> None:
        self.source = source
        if source:
            self.cap = self._open_source(source)
        else:
            self.cap = self._init_camera(camera_index)
            width, height = frame_size
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    def _init_camera(self, index: int) -> cv2.VideoCapture:
        """カメラデバイスを初期化する。見つからない場合は /dev/video* を順に試す。"""
        cap = cv2.VideoCapture(index)
        if cap.isOpened():
            return cap

        logger.warning("Camera %d not found, probing /dev/video*", index)
        for device in sorted(glob.glob("/dev/video*")):
            logger.debug("Trying device %s", device)
            fallback = cv2.VideoCapture(device)
            if fallback.isOpened():
                logger.info("Using camera %s", device)
                return fallback
        raise CaptureOpenError(f"Couldn't find camera: {index}")

    @staticmethod
    def _open_source(source: str) -> cv2.VideoCapture:
        cap = cv2.VideoCapture(source)
        if not cap.isOpened():
            raise CaptureOpenError(f"Couldn't open image or video: {source}")
        return cap

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """次のフレームを読み込む。4チャンネルのフレームはBGRに変換する。"""
        ret, frame = self.cap.read()
        if not ret or frame is None or frame.size == 0:
            return False, None
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
        return True, frame

    def frames(self) -> Iterator[np.ndarray]:
        """ストリームの終わりまでフレームを順に返す。"""
        while True:
            ret, frame = self.read()
            if not ret:
                return
            yield frame

    def release(self) -> None:
        if self.cap is not None and self.cap.isOpened():
            self.cap.release()
