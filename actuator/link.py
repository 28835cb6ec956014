"""Firmata connection to the microcontroller driving the output pin."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import serial
import serial.tools.list_ports
from pyfirmata2 import OUTPUT, Arduino

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

DEFAULT_PORT_PATTERN = "ACM"
HANDSHAKE_TIMEOUT_S = 5.0
HANDSHAKE_POLL_S = 0.05
SAMPLING_INTERVAL_MS = 100


class ActuatorNotFoundError(ConnectionError):
    """利用可能なマイコンがどのポートにも見つからなかった。"""


class TransportError(IOError):
    """接続済みのマイコンとの通信に失敗した、または接続が閉じられている。"""


def list_ports() -> List[Tuple[str, str]]:
    """利用可能なシリアルポート一覧を返す"""
    return [(p.device, p.description) for p in serial.tools.list_ports.comports()]


def candidate_ports(ports: Iterable[str], pattern: str = DEFAULT_PORT_PATTERN) -> List[str]:
    """デバイス名に pattern を含むポートだけを残す。"""
    return [port for port in ports if pattern in port]


class FirmataLink:
    """Firmata ボードへの接続を保持し、ピン操作の失敗を TransportError にまとめる。

    ボードから Firmata のバージョン報告を受け取るまでは準備完了とみなさない。

    Args:
        board: pyfirmata2 のボードオブジェクト。
        port: 接続しているシリアルポート名。
    """

    def __init__(self, board, port: str) -> None:
        self.board = board
        self.port = port
        self.firmata_version: Optional[Tuple[int, int]] = None
        self.sampling_interval_ms: Optional[int] = None
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def connect(
        cls,
        candidates: Optional[Sequence[str]] = None,
        pattern: str = DEFAULT_PORT_PATTERN,
        board_factory: Callable[[str], object] = Arduino,
        handshake_timeout_s: float = HANDSHAKE_TIMEOUT_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "FirmataLink":
        """候補ポートに順に接続を試み、最初に Firmata が応答したボードを返す。

        Args:
            candidates: 試行するポート。Noneの場合はシステムのポートを pattern で絞り込む。
            pattern: ポート自動検出時にデバイス名に含まれるべき文字列。
            board_factory: ポート名からボードを生成する関数。
            handshake_timeout_s: バージョン報告を待つ最大時間（秒）。
            sleep: 待機に使う関数。

        Raises:
            ActuatorNotFoundError: どのポートでも接続できなかった場合。
        """
        if candidates is None:
            candidates = candidate_ports((device for device, _ in list_ports()), pattern)

        for port in candidates:
            logger.info("Trying %s", port)
            try:
                board = board_factory(port)
            except (serial.SerialException, OSError) as exc:
                logger.warning("Could not open %s: %s", port, exc)
                continue

            link = cls(board, port)
            if link.wait_for_firmata(handshake_timeout_s, sleep=sleep) and link.is_ready():
                logger.info("Connected to Firmata %s board on %s", link.firmata_version, port)
                return link
            logger.warning("No Firmata answer on %s", port)
            link.close()

        raise ActuatorNotFoundError("Connect the device to a USB port and try again.")

    def wait_for_firmata(
        self,
        timeout_s: float,
        sampling_interval_ms: int = SAMPLING_INTERVAL_MS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> bool:
        """受信を開始し、Firmata のバージョン報告が届くまで最大 timeout_s 秒待つ。"""
        try:
            self.set_sampling_interval(sampling_interval_ms)
        except TransportError as exc:
            logger.warning("Handshake failed: %s", exc)
            return False

        deadline = clock() + max(0.0, timeout_s)
        while True:
            version = self.board.get_firmata_version()
            if version:
                with self._lock:
                    self.firmata_version = tuple(version)
                return True
            if clock() >= deadline:
                return False
            sleep(HANDSHAKE_POLL_S)

    def is_ready(self) -> bool:
        with self._lock:
            if self._closed or self.firmata_version is None:
                return False
            sp = getattr(self.board, "sp", None)
            return bool(sp is not None and sp.is_open)

    @contextmanager
    def _transport(self, operation: str) -> Iterator[None]:
        """シリアル層の例外を TransportError に変換する。"""
        with self._lock:
            if self._closed:
                raise TransportError(f"{operation}: link to {self.port} is closed")
            try:
                yield
            except (serial.SerialException, OSError) as exc:
                raise TransportError(f"{operation} on {self.port} failed: {exc}") from exc

    def set_sampling_interval(self, interval_ms: int) -> None:
        """サンプリングを開始する。同じ間隔で開始済みなら何もしない。"""
        with self._transport("samplingOn"):
            if self.sampling_interval_ms == interval_ms:
                return
            self.board.samplingOn(interval_ms)
            self.sampling_interval_ms = interval_ms

    def set_pin_mode(self, pin: int, mode: int = OUTPUT) -> None:
        with self._transport("pinMode"):
            self.board.digital[pin].mode = mode

    def digital_read(self, pin: int) -> bool:
        with self._transport("digitalRead"):
            return bool(self.board.digital[pin].read())

    def digital_write(self, pin: int, level: bool) -> None:
        with self._transport("digitalWrite"):
            self.board.digital[pin].write(1 if level else 0)

    def close(self) -> None:
        """接続を閉じる。2回目以降の呼び出しは何もしない。"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self.board.exit()
            except (serial.SerialException, OSError) as exc:
                logger.warning("Error while closing %s: %s", self.port, exc)
                self._close_serial()
        logger.info("Closed Firmata link on %s", self.port)

    def _close_serial(self) -> None:
        """exit() が途中で失敗したときにシリアルポートだけは閉じる。"""
        sp = getattr(self.board, "sp", None)
        if sp is None or not sp.is_open:
            return
        try:
            sp.close()
        except (serial.SerialException, OSError) as exc:
            logger.debug("Ignoring error while closing serial port %s: %s", self.port, exc)
