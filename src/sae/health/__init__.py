from .evaluator import DEFAULT_OFFLINE_AFTER, evaluate, evaluate_state
from .offline import OfflineDetector, SweepReport

__all__ = [
    "DEFAULT_OFFLINE_AFTER",
    "OfflineDetector",
    "SweepReport",
    "evaluate",
    "evaluate_state",
]
