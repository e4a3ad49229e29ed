"""Position lifecycle: ROE, protective stops, exit cascade, reconciliation"""
from .exit_engine import EXIT_RULES, evaluate_position
from .position_monitor import PositionMonitor
from .reconciler import sync_positions

__all__ = ["EXIT_RULES", "evaluate_position", "PositionMonitor", "sync_positions"]
