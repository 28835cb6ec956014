"""UI helpers for the people detector."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence, Tuple

import cv2
import numpy as np

from .trigger import STATUS_BUSY, STATUS_READY, Detection

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

ESC_KEY = 27
KEY_POLL_MS = 100
EXIT_KEYS = (ESC_KEY, ord("q"))
STYLES = ("box", "line")
DEFAULT_LABEL = "Person"

FONT = cv2.FONT_HERSHEY_SIMPLEX
TEXT_SCALE = 0.5
TEXT_COLOR = (0, 0, 255)
ROI_COLOR = (0, 255, 0)
LABEL_TEXT_COLOR = (0, 0, 0)

STATUS_TEXT = {
    STATUS_READY: "Ready to run the procedure!",
    STATUS_BUSY: "Device busy!",
}
UNAVAILABLE_TEXT = "Device unavailable"


def screen_size() -> Tuple[int, int]:
    """ディスプレイの幅と高さを取得する。"""
    import tkinter as tk

    root = tk.Tk()
    root.withdraw()  # ウィンドウを表示せずに処理だけ行う
    try:
        return root.winfo_screenwidth(), root.winfo_screenheight()
    finally:
        root.destroy()


class DetectorUI:
    """OpenCVウィンドウへの描画と表示、キー入力の取得を行う。

    Args:
        window_name: メインウィンドウの名前。
        style: 検出領域の描画方法 ("box" または "line")。
        class_names: クラスIDに対応するラベル名。
        target_class: ラベル名が無いときに DEFAULT_LABEL を使うクラスID。
        fit_to_screen: 表示をディスプレイのサイズに拡大するかどうか。
    """

    def __init__(
        self,
        window_name: str = "L2: People detection",
        style: str = "box",
        class_names: Sequence[str] = (),
        target_class: Optional[int] = None,
        fit_to_screen: bool = False,
    ) -> None:
        if style not in STYLES:
            raise ValueError(f"Unknown style: {style}")
        self.window_name = window_name
        self.style = style
        self.class_names = list(class_names)
        self.target_class = target_class
        self.display_size: Optional[Tuple[int, int]] = screen_size() if fit_to_screen else None
        self._window_created = False

    def label_for(self, detection: Detection) -> str:
        class_id = detection.class_id
        if 0 <= class_id < len(self.class_names):
            name = self.class_names[class_id]
        elif class_id == self.target_class:
            name = DEFAULT_LABEL
        else:
            name = f"unknown({class_id})"
        return f"{name}: {detection.confidence:.2f}"

    def draw_detection(self, frame: np.ndarray, detection: Detection) -> None:
        """検出領域とラベルを描画する。"""
        p1 = detection.top_left
        p2 = detection.bottom_right

        if self.style == "box":
            cv2.rectangle(frame, p1, p2, ROI_COLOR, 1)
        else:
            cv2.line(frame, p1, detection.center, ROI_COLOR, 1)

        label = self.label_for(detection)
        (text_w, text_h), baseline = cv2.getTextSize(label, FONT, TEXT_SCALE, 1)
        cv2.rectangle(
            frame,
            p1,
            (p1[0] + text_w, p1[1] + text_h + baseline),
            ROI_COLOR,
            cv2.FILLED,
        )
        cv2.putText(frame, label, (p1[0], p1[1] + text_h), FONT, TEXT_SCALE, LABEL_TEXT_COLOR)

    def draw_status(self, frame: np.ndarray, status: str, inference_ms: Optional[float]) -> None:
        """推論時間とアクチュエータの状態を描画する。"""
        if inference_ms is not None and inference_ms > 0:
            cv2.putText(
                frame,
                f"FPS: {1000.0 / inference_ms:.2f} ; Time: {inference_ms:.2f} ms",
                (20, 20),
                FONT,
                TEXT_SCALE,
                TEXT_COLOR,
            )
        cv2.putText(frame, "Press ESC to exit", (20, 200), FONT, TEXT_SCALE, TEXT_COLOR)
        cv2.putText(frame, STATUS_TEXT.get(status, UNAVAILABLE_TEXT), (20, 220), FONT, TEXT_SCALE, TEXT_COLOR)

    def show(self, frame: np.ndarray) -> int:
        """フレームを表示し、押されたキーを返す。"""
        if not self._window_created:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            self._window_created = True
        if self.display_size is not None:
            frame = cv2.resize(frame, self.display_size, interpolation=cv2.INTER_NEAREST)
        cv2.imshow(self.window_name, frame)
        return cv2.waitKey(1) & 0xFF

    def wait_for_key(self, should_stop: Callable[[], bool] = lambda: False) -> None:
        """最後のフレームを表示したままキー入力を待つ。should_stop がTrueを返したら待機をやめる。"""
        if not self._window_created:
            return
        while not should_stop():
            if cv2.waitKey(KEY_POLL_MS) != -1:
                return

    def close(self) -> None:
        cv2.destroyAllWindows()
