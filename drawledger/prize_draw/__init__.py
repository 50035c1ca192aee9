"""Utilities for the draw settlement subsystem."""

from .engine import DrawResults, SettlementEngine, SettlementResult, draw_results
from .shuffle import ALGORITHM_NAME, pick_distinct, secure_shuffle

__all__ = [
    "ALGORITHM_NAME",
    "DrawResults",
    "SettlementEngine",
    "SettlementResult",
    "draw_results",
    "pick_distinct",
    "secure_shuffle",
]
