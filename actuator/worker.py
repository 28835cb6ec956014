"""Actuation worker that toggles the output pin on request.

The frame loop never talks to the board directly. The actuation gate enqueues
``{"type": "actuate"}`` messages and a single worker thread consumes them,
runs the pin sequence and reports an :class:`~detector.trigger.ActuationOutcome`
back to the gate. A ``None`` sentinel (or ``{"type": "shutdown"}``) stops the
worker; :meth:`ActuationWorker.shutdown` joins the thread so the link can be
closed safely afterwards.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pyfirmata2 import OUTPUT

from detector.trigger import ActuationGate, ActuationOutcome

from .link import FirmataLink, TransportError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass(frozen=True)
class ActuationConfig:
    """ピン操作シーケンスの設定。"""

    pin: int = 13
    toggle_count: int = 6
    toggle_interval_s: float = 1.0
    sampling_interval_ms: int = 100


DEFAULT_ACTUATION = ActuationConfig()


def run_toggle_sequence(
    link: FirmataLink,
    config: ActuationConfig = DEFAULT_ACTUATION,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """出力ピンを一定間隔で toggle_count 回反転させる。

    ピンの現在値を読み、反転した値を書き込む。センサーのフィードバックは使わない固定の動作。

    Raises:
        TransportError: 途中で通信に失敗した場合。
    """

    link.set_sampling_interval(config.sampling_interval_ms)
    link.set_pin_mode(config.pin, OUTPUT)
    for i in range(config.toggle_count):
        level = link.digital_read(config.pin)
        link.digital_write(config.pin, not level)
        logger.debug("Pin %d -> %s (%d/%d)", config.pin, not level, i + 1, config.toggle_count)
        sleep(config.toggle_interval_s)


class ActuationWorker:
    """キューからのアクチュエーション要求を1件ずつ実行するワーカースレッド。

    Args:
        link: マイコンへの接続。
        gate: 完了を報告するゲート。gate.queue から要求を受け取る。
        config: ピン操作シーケンスの設定。
        sleep: 待機に使う関数（テスト用に差し替え可能）。
    """

    def __init__(
        self,
        link: FirmataLink,
        gate: ActuationGate,
        config: ActuationConfig = DEFAULT_ACTUATION,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if gate.queue is None:
            raise ValueError("ActuationWorker requires a gate with a command queue")
        self.link = link
        self.gate = gate
        self.command_queue: queue.Queue = gate.queue
        self.config = config
        self.sleep = sleep
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """受信を別スレッドで待ち受ける。"""

        if self.thread is not None:
            return
        self.thread = threading.Thread(target=self._run_loop, name="actuation-worker", daemon=True)
        self.thread.start()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """ワーカーを止め、実行中のタスクが終わるまで待つ。"""

        if self.thread is None:
            return
        self.command_queue.put(None)
        self.thread.join(timeout)
        if self.thread.is_alive():
            logger.warning("Actuation worker did not stop within %s s", timeout)
            return
        self.thread = None

    def _run_loop(self) -> None:
        while True:
            message = self.command_queue.get()
            if message is None:
                logger.debug("Queue sentinel received; exiting actuation worker")
                break

            command = message.get("type") if isinstance(message, dict) else message
            if command == "shutdown":
                logger.debug("Shutdown command received; exiting actuation worker")
                break
            if command != "actuate":
                logger.debug("Ignoring unknown queue message: %s", message)
                continue

            outcome = ActuationOutcome(ok=False, error="actuation task aborted")
            try:
                outcome = self._execute()
            finally:
                self.gate.complete(outcome)

    def _execute(self) -> ActuationOutcome:
        """シーケンスを1回実行し、結果を ActuationOutcome として返す。"""

        if not self.link.is_ready():
            return ActuationOutcome(ok=False, link_lost=True, error="actuator not ready")

        logger.info("Actuation started on pin %d", self.config.pin)
        try:
            run_toggle_sequence(self.link, self.config, self.sleep)
        except TransportError as exc:
            logger.error("Transport error during actuation: %s", exc)
            self.link.close()
            return ActuationOutcome(ok=False, link_lost=True, error=str(exc))
        except Exception as exc:
            logger.exception("Unexpected error during actuation")
            return ActuationOutcome(ok=False, error=str(exc))
        return ActuationOutcome(ok=True)
