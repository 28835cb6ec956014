import queue

import pytest

from detector.trigger import (
    STATUS_BUSY,
    STATUS_READY,
    STATUS_UNAVAILABLE,
    ActuationGate,
    ActuationOutcome,
    Detection,
    GateConfig,
)

PERSON = Detection(class_id=14, confidence=0.9, box=(0.5, 0.5, 0.2, 0.3))


def test_single_person_detection_issues_one_request(gate, command_queue):
    assert gate.status(now=0.0) == STATUS_READY
    assert gate.evaluate([PERSON], now=0.0) is True

    assert command_queue.qsize() == 1
    message = command_queue.get_nowait()
    assert message["type"] == "actuate"
    assert gate.status(now=0.0) == STATUS_BUSY
    assert gate.state.requests_issued == 1
    assert gate.in_flight


def test_busy_gate_ignores_further_detections(gate, command_queue):
    gate.evaluate([PERSON], now=0.0)
    for i in range(100):
        assert gate.evaluate([PERSON], now=0.1 * i) is False

    assert command_queue.qsize() == 1
    assert gate.state.requests_issued == 1


def test_multiple_qualifying_detections_produce_one_request(gate, command_queue):
    second = Detection(class_id=14, confidence=0.95, box=(10.0, 10.0, 5.0, 5.0))
    assert gate.evaluate([PERSON, second, PERSON], now=0.0)
    assert command_queue.qsize() == 1


@pytest.mark.parametrize("confidence", [0.0, 0.3, 0.6])
def test_confidence_at_or_below_threshold_never_triggers(gate, command_queue, confidence):
    detection = Detection(class_id=14, confidence=confidence, box=(0.0, 0.0, 1.0, 1.0))
    assert gate.evaluate([detection], now=0.0) is False
    assert command_queue.empty()
    assert gate.status(now=0.0) == STATUS_READY


@pytest.mark.parametrize("class_id", [0, 3, 13, 15])
def test_other_classes_never_trigger(gate, command_queue, class_id):
    detection = Detection(class_id=class_id, confidence=0.99, box=(0.0, 0.0, 1.0, 1.0))
    assert gate.evaluate([detection], now=0.0) is False
    assert command_queue.empty()


def test_empty_frame_does_not_trigger(gate, command_queue):
    assert gate.evaluate([], now=0.0) is False
    assert command_queue.empty()


def test_gate_rearms_after_completion_and_cooldown(gate, command_queue):
    gate.evaluate([PERSON], now=0.0)
    gate.complete(ActuationOutcome(ok=True), now=10.0)

    assert not gate.in_flight
    assert gate.status(now=14.9) == STATUS_BUSY
    assert gate.evaluate([PERSON], now=14.9) is False

    assert gate.status(now=15.0) == STATUS_READY
    assert gate.evaluate([PERSON], now=15.0) is True
    assert command_queue.qsize() == 2


def test_gate_stays_busy_until_completion_reported(gate):
    gate.evaluate([PERSON], now=0.0)
    assert gate.status(now=1000.0) == STATUS_BUSY
    assert gate.evaluate([PERSON], now=1000.0) is False


def test_lost_link_makes_gate_unavailable_after_cooldown(gate, command_queue):
    gate.evaluate([PERSON], now=0.0)
    command_queue.get_nowait()
    gate.complete(ActuationOutcome(ok=False, link_lost=True, error="gone"), now=6.0)

    assert gate.status(now=7.0) == STATUS_BUSY
    assert gate.status(now=11.0) == STATUS_UNAVAILABLE

    assert gate.evaluate([PERSON], now=12.0) is False
    assert gate.evaluate([PERSON], now=13.0) is False
    assert gate.state.unavailable_triggers == 2
    assert command_queue.empty()


def test_failed_task_without_link_loss_keeps_gate_available(gate):
    gate.evaluate([PERSON], now=0.0)
    gate.complete(ActuationOutcome(ok=False, error="boom"), now=1.0)
    assert gate.status(now=6.0) == STATUS_READY


def test_completion_without_request_is_ignored(gate):
    gate.complete(ActuationOutcome(ok=True), now=1.0)
    assert gate.state.completed_ts is None
    assert gate.status(now=1.0) == STATUS_READY


def test_duplicate_completion_does_not_extend_cooldown(gate):
    gate.evaluate([PERSON], now=0.0)
    gate.complete(ActuationOutcome(ok=True), now=1.0)
    gate.complete(ActuationOutcome(ok=True), now=5.0)
    assert gate.status(now=6.0) == STATUS_READY


def test_full_queue_rolls_back_to_idle():
    full_queue = queue.Queue(maxsize=1)
    full_queue.put_nowait({"type": "other"})
    gate = ActuationGate(full_queue, GateConfig())

    assert gate.evaluate([PERSON], now=0.0) is False
    assert gate.status(now=0.0) == STATUS_READY
    assert gate.state.requests_issued == 0


def test_gate_without_queue_is_unavailable():
    gate = ActuationGate(None)
    assert gate.status(now=0.0) == STATUS_UNAVAILABLE
    assert gate.evaluate([PERSON], now=0.0) is False
    assert gate.state.unavailable_triggers == 1


def test_target_class_and_threshold_are_configurable(command_queue):
    gate = ActuationGate(command_queue, GateConfig(target_class=3, min_confidence=0.95))
    assert gate.evaluate([Detection(3, 0.9, (0, 0, 1, 1))], now=0.0) is False
    assert gate.evaluate([Detection(14, 0.99, (0, 0, 1, 1))], now=0.0) is False
    assert gate.evaluate([Detection(3, 0.99, (0, 0, 1, 1))], now=0.0) is True


def test_detection_corner_points():
    detection = Detection(class_id=14, confidence=0.9, box=(160.0, 120.0, 64.0, 72.0))
    assert detection.top_left == (128, 84)
    assert detection.bottom_right == (192, 156)
    assert detection.center == (160, 120)
