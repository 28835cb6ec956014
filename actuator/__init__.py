"""Actuator component package."""

from .link import ActuatorNotFoundError, FirmataLink, TransportError, candidate_ports, list_ports
from .worker import ActuationConfig, ActuationWorker, run_toggle_sequence

__all__ = [
    "ActuatorNotFoundError",
    "FirmataLink",
    "TransportError",
    "candidate_ports",
    "list_ports",
    "ActuationConfig",
    "ActuationWorker",
    "run_toggle_sequence",
]
