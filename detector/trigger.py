"""Queue based actuation gate for the people detector."""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

STATUS_READY = "ready"
STATUS_BUSY = "busy"
STATUS_UNAVAILABLE = "unavailable"

PERSON_CLASS = 14


@dataclass(frozen=True)
class Detection:
    """1フレーム内の1候補の検出結果。box は (中心x, 中心y, 幅, 高さ) のピクセル値。"""

    class_id: int
    confidence: float
    box: Tuple[float, float, float, float]

    @property
    def top_left(self) -> Tuple[int, int]:
        x_center, y_center, width, height = self.box
        return int(round(x_center - width / 2)), int(round(y_center - height / 2))

    @property
    def bottom_right(self) -> Tuple[int, int]:
        x_center, y_center, width, height = self.box
        return int(round(x_center + width / 2)), int(round(y_center + height / 2))

    @property
    def center(self) -> Tuple[int, int]:
        x_center, y_center, _, _ = self.box
        return int(round(x_center)), int(round(y_center))


@dataclass(frozen=True)
class GateConfig:
    """トリガー条件とクールダウンの設定。"""

    target_class: int = PERSON_CLASS
    min_confidence: float = 0.6
    cooldown_s: float = 5.0


DEFAULT_GATE = GateConfig()


@dataclass(frozen=True)
class ActuationOutcome:
    """アクチュエーションタスクの完了イベント。失敗も通常の完了として扱う。

    Parameters:
        ok: ピン操作シーケンスが最後まで実行できたかどうか。
        link_lost: マイコンとの接続が失われたかどうか。
        error: 失敗理由（ログ表示用）。
    """

    ok: bool
    link_lost: bool = False
    error: Optional[str] = None


@dataclass
class GateState:
    """フレームループとワーカースレッドで共有するゲートの状態。必ず lock を取得してから読み書きする。"""

    busy: bool = False
    available: bool = True
    completed_ts: Optional[float] = None
    requests_issued: int = 0
    unavailable_triggers: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class ActuationGate:
    """検出結果からアクチュエーション要求をキューへ送るタイミングを決定する。

    同時に実行中の要求は常に最大1件。要求の完了が報告され、さらにクールダウン時間が
    経過するまで次の要求は作られない。

    Args:
        command_queue: 要求を送信するキュー。Noneの場合はアクチュエータなしとして扱う。
        config: トリガー条件とクールダウンの設定。
        state: 共有する状態。省略時は新規に作成する。
    """

    def __init__(
        self,
        command_queue: Optional[queue.Queue],
        config: GateConfig = DEFAULT_GATE,
        state: Optional[GateState] = None,
    ) -> None:
        self.queue = command_queue
        self.config = config
        self.cooldown_s = max(0.0, config.cooldown_s)
        self.state = state if state is not None else GateState()
        if self.queue is None:
            self.state.available = False

    def qualifies(self, detection: Detection) -> bool:
        """検出がトリガー対象クラスで、信頼度が閾値を超えているかを判定する。"""
        return (
            detection.class_id == self.config.target_class
            and detection.confidence > self.config.min_confidence
        )

    def evaluate(self, detections: Iterable[Detection], now: Optional[float] = None) -> bool:
        """条件を満たした場合にアクチュエーション要求を1件だけ送信する。
        - 条件1: 対象クラスかつ閾値超えの検出が1件以上あること。
        - 条件2: ゲートがIDLEであること（実行中・クールダウン中でないこと）。
        - 条件3: アクチュエータが利用可能であること。

        Args:
            detections: 現在フレームの検出結果。
            now: 現在時刻。

        Returns:
            要求を送信した場合はTrue。
        """
        trigger = next((d for d in detections if self.qualifies(d)), None)
        if trigger is None:
            return False
        if now is None:
            now = time.time()

        state = self.state
        with state.lock:
            self._refresh(now)
            if state.busy:
                return False
            if not state.available:
                state.unavailable_triggers += 1
                logger.debug("Trigger ignored, actuator unavailable (%d)", state.unavailable_triggers)
                return False

            if not self._send("actuate", class_id=trigger.class_id, confidence=trigger.confidence):
                return False
            state.busy = True
            state.completed_ts = None
            state.requests_issued += 1
            return True

    def complete(self, outcome: ActuationOutcome, now: Optional[float] = None) -> None:
        """ワーカーからの完了報告を受け取る。クールダウンはこの時刻から数える。

        Args:
            outcome: タスクの完了結果。
            now: 現在時刻。
        """
        if now is None:
            now = time.time()

        state = self.state
        with state.lock:
            if not state.busy or state.completed_ts is not None:
                logger.warning("Completion reported with no actuation in flight: %s", outcome)
                return
            state.completed_ts = now
            if outcome.link_lost:
                state.available = False
                logger.warning("Actuator lost; further triggers are disabled (%s)", outcome.error)
            elif not outcome.ok:
                logger.warning("Actuation failed: %s", outcome.error)
            else:
                logger.info("Actuation finished; re-arming in %.1f s", self.cooldown_s)

    def status(self, now: Optional[float] = None) -> str:
        """表示用の現在状態を返す。"""
        if now is None:
            now = time.time()

        state = self.state
        with state.lock:
            self._refresh(now)
            if state.busy:
                return STATUS_BUSY
            if not state.available:
                return STATUS_UNAVAILABLE
            return STATUS_READY

    @property
    def in_flight(self) -> bool:
        """要求を送信済みで、まだ完了報告を受けていないかどうか。"""
        with self.state.lock:
            return self.state.busy and self.state.completed_ts is None

    def _refresh(self, now: float) -> None:
        """完了後クールダウンが経過していればIDLEに戻す。呼び出し側で lock を保持すること。"""
        state = self.state
        if not state.busy or state.completed_ts is None:
            return
        if now - state.completed_ts >= self.cooldown_s:
            state.busy = False
            state.completed_ts = None

    def _send(self, command: str, **payload) -> bool:
        """コマンドをキューに送信する。"""
        if self.queue is None:
            return False
        message = {"type": command, "timestamp": time.time(), **payload}
        try:
            self.queue.put_nowait(message)
        except queue.Full:
            logger.error("Command queue full, dropping %s", command)
            return False
        logger.info("Enqueued %s: %s", command, payload)
        return True
