"""Lease decision engine and the reconciliation loop that drives it."""

from .decision import Command, Decision, StateSync, apply_sync, decide, detect_drift
from .loop import Reconciler, TickReport

__all__ = [
    "Command",
    "Decision",
    "StateSync",
    "apply_sync",
    "decide",
    "detect_drift",
    "Reconciler",
    "TickReport",
]
