import queue

import pytest
import serial

from actuator.link import TransportError
from detector.trigger import ActuationGate, GateConfig


class FakePin:
    def __init__(self):
        self.mode = None
        self.value = None
        self.fail = False

    def write(self, value):
        if self.fail:
            raise serial.SerialException("device disconnected")
        self.value = value

    def read(self):
        if self.fail:
            raise serial.SerialException("device disconnected")
        return self.value


class FakeSerial:
    def __init__(self, is_open=True):
        self.is_open = is_open
        self.close_calls = 0

    def close(self):
        self.close_calls += 1
        self.is_open = False


class FakeBoard:
    """pyfirmata2 の Arduino を模したボード。"""

    def __init__(self, port, is_open=True, firmata_version=(2, 5), exit_error=None):
        self.port = port
        self.sp = FakeSerial(is_open)
        self.digital = [FakePin() for _ in range(20)]
        self.firmata_version = firmata_version
        self.exit_error = exit_error
        self.sampling_calls = []
        self.exit_calls = 0

    @property
    def sampling_interval(self):
        return self.sampling_calls[-1] if self.sampling_calls else None

    def samplingOn(self, interval_ms):
        self.sampling_calls.append(interval_ms)

    def get_firmata_version(self):
        return self.firmata_version

    def exit(self):
        self.exit_calls += 1
        if self.exit_error is not None:
            raise self.exit_error
        self.sp.close()


class FakeLink:
    """FirmataLink と同じ操作を持つ記録用のリンク。"""

    def __init__(self, fail_after_writes=None, ready=True, error=None):
        self.fail_after_writes = fail_after_writes
        self.ready = ready
        self.error = error
        self.levels = {}
        self.writes = []
        self.modes = {}
        self.sampling_interval = None
        self.closed = False
        self.close_calls = 0

    def is_ready(self):
        return self.ready and not self.closed

    def set_sampling_interval(self, interval_ms):
        self.sampling_interval = interval_ms

    def set_pin_mode(self, pin, mode):
        self.modes[pin] = mode

    def digital_read(self, pin):
        if self.error is not None:
            raise self.error
        return bool(self.levels.get(pin, False))

    def digital_write(self, pin, level):
        if self.fail_after_writes is not None and len(self.writes) >= self.fail_after_writes:
            raise TransportError("digitalWrite failed: device disconnected")
        self.writes.append(level)
        self.levels[pin] = level

    def close(self):
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def command_queue():
    return queue.Queue()


@pytest.fixture
def gate(command_queue):
    return ActuationGate(command_queue, GateConfig(target_class=14, min_confidence=0.6, cooldown_s=5.0))
