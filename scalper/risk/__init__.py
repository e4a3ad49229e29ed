"""Account risk gates"""
from .daily_risk import check_daily_limits, check_daily_reset
from .risk_manager import RiskManager, calculate_exposure

__all__ = ["check_daily_limits", "check_daily_reset", "RiskManager", "calculate_exposure"]
