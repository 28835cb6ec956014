"""Inference pipeline pieces for people detection."""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import ModelLoadError
from .trigger import Detection

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# 出力テーブルの列: 中心x, 中心y, 幅, 高さ, objectness, クラススコア...
PROBABILITY_INDEX = 5


def parse_detections(
    table: np.ndarray,
    frame_size: Tuple[int, int],
    min_confidence: float = 0.0,
) -> List[Detection]:
    """ネットワーク出力テーブルを Detection のリストに変換する。

    各行で最もスコアの高いクラスを採用し、そのスコアを信頼度とする。
    座標は入力サイズに対して正規化されているため、フレームの幅・高さで拡大する。

    Args:
        table: (行数, 5 + クラス数) の出力。
        frame_size: フレームのサイズ (幅, 高さ)。
        min_confidence: この値以下の信頼度の行は捨てる。
    """
    table = np.asarray(table, dtype=np.float32)
    if table.ndim != 2 or table.shape[0] == 0 or table.shape[1] <= PROBABILITY_INDEX:
        return []

    width, height = frame_size
    scores = table[:, PROBABILITY_INDEX:]
    class_ids = np.argmax(scores, axis=1)
    confidences = scores[np.arange(len(scores)), class_ids]

    detections: List[Detection] = []
    for row, class_id, confidence in zip(table, class_ids, confidences):
        if confidence <= min_confidence:
            continue
        detections.append(
            Detection(
                class_id=int(class_id),
                confidence=float(confidence),
                box=(
                    float(row[0]) * width,
                    float(row[1]) * height,
                    float(row[2]) * width,
                    float(row[3]) * height,
                ),
            )
        )
    return detections


def load_class_names(path: Optional[str]) -> List[str]:
    """1行1クラス名のファイルを読み込む。ファイルがなければ空のリストを返す。"""
    if not path:
        return []
    try:
        with open(path, "r", encoding="utf-8") as fp:
            return [line.rstrip("\r\n") for line in fp]
    except OSError as exc:
        logger.warning("Class names file not loaded (%s): %s", path, exc)
        return []


class YoloDetector:
    """OpenCV dnn で Darknet (YOLO) モデルを実行する検出器。

    Args:
        cfg_path: モデル設定ファイル (.cfg)。
        weights_path: モデル重みファイル (.weights)。
        input_size: ネットワーク入力サイズ (幅, 高さ)。
        scale: 画素値の正規化係数。
        min_confidence: この値以下の検出は返さない。
    """

    def __init__(
        self,
        cfg_path: str,
        weights_path: str,
        input_size: Tuple[int, int] = (320, 240),
        scale: float = 1 / 255.0,
        min_confidence: float = 0.0,
    ) -> None:
        self.input_size = input_size
        self.scale = scale
        self.min_confidence = min_confidence
        self.net = self._load_network(cfg_path, weights_path)
        self.output_names: Sequence[str] = self.net.getUnconnectedOutLayersNames()

    @staticmethod
    def _load_network(cfg_path: str, weights_path: str) -> cv2.dnn.Net:
        for path in (cfg_path, weights_path):
            if not path or not os.path.isfile(path):
                raise ModelLoadError(f"Model file not found: {path!r}")
        try:
            net = cv2.dnn.readNetFromDarknet(cfg_path, weights_path)
        except cv2.error as exc:
            raise ModelLoadError(f"Can't load network: {exc}") from exc
        if net.empty():
            raise ModelLoadError(f"Can't load network from {cfg_path} / {weights_path}")
        net.setPreferableBackend(cv2.dnn.DNN_BACKEND_OPENCV)
        net.setPreferableTarget(cv2.dnn.DNN_TARGET_CPU)
        logger.info("Loaded network %s", cfg_path)
        return net

    def detect(self, frame: np.ndarray) -> List[Detection]:
        """フレームに対して推論を行い、ピクセル座標の検出結果を返す。"""
        blob = cv2.dnn.blobFromImage(frame, self.scale, self.input_size, (0, 0, 0), swapRB=True, crop=False)
        self.net.setInput(blob)
        outputs = self.net.forward(self.output_names)
        table = np.vstack([np.asarray(out).reshape(-1, out.shape[-1]) for out in outputs])
        height, width = frame.shape[:2]
        return parse_detections(table, (width, height), self.min_confidence)

    def inference_time_ms(self) -> float:
        """直前の推論にかかった時間（ミリ秒）。"""
        ticks, _ = self.net.getPerfProfile()
        return ticks * 1000.0 / cv2.getTickFrequency()
