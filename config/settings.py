"""
Configuration settings for the FlashScalper position engine
"""
from typing import Optional, Literal
from pydantic_settings import BaseSettings
from pydantic import Field
from pathlib import Path

from scalper.types import ScalperConfig


class ExchangeSettings(BaseSettings):
    """Bybit exchange configuration"""
    model_config = {"env_file": ".env", "env_prefix": "BYBIT_", "extra": "ignore"}

    api_key: str = Field("", description="Bybit API key")
    api_secret: str = Field("", description="Bybit API secret")
    testnet: bool = Field(True, description="Use testnet for testing")
    settle_coin: str = "USDT"


class LLMSettings(BaseSettings):
    """LLM advisory configuration"""
    model_config = {"env_file": ".env", "env_prefix": "LLM_", "extra": "ignore"}

    enabled: bool = False
    api_key: Optional[str] = None
    model: str = "deepseek-chat"
    base_url: str = "https://api.deepseek.com"
    timeout: float = Field(5.0, gt=0)
    temperature: float = 0.3
    max_tokens: int = 512

    # Retry with backoff on transient failures
    max_retries: int = Field(3, ge=0)
    initial_delay_ms: int = Field(500, ge=0)
    max_delay_ms: int = Field(5000, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1)
    jitter: bool = True

    # Circuit breaker
    failure_threshold: int = Field(5, ge=1)
    success_threshold: int = Field(2, ge=1)
    circuit_timeout_seconds: float = Field(60.0, gt=0)


class ScalperSettings(BaseSettings):
    """Scalper thresholds - every option of the position engine"""
    model_config = {"env_file": ".env", "env_prefix": "SCALPER_", "extra": "ignore"}

    leverage: float = Field(10, gt=0, le=125)

    # Sizing
    position_size_percent: float = Field(25.0, gt=0, le=100)
    position_size_usd: Optional[float] = Field(None, gt=0)
    min_position_size_usd: float = Field(10.0, gt=0)
    max_position_size_usd: float = Field(150.0, gt=0)
    dynamic_position_sizing: bool = True
    max_position_size_boost: float = Field(1.5, ge=1)
    min_position_size_reduction: float = Field(0.7, gt=0, le=1)
    performance_adaptation: bool = True
    high_win_rate_threshold: float = Field(0.65, ge=0, le=1)
    low_win_rate_threshold: float = Field(0.40, ge=0, le=1)

    # Admission
    max_positions: int = Field(4, ge=1)
    max_exposure_percent: float = Field(80.0, gt=0, le=100)

    # Account circuit breaker
    max_daily_loss_percent: float = Field(10.0, gt=0, le=100)
    max_drawdown_percent: float = Field(20.0, gt=0, le=100)
    daily_profit_target_percent: float = Field(0.0, ge=0)

    # Exits
    stop_loss_roe: float = Field(-3.5, lt=0)
    take_profit_roe: float = Field(10.0, gt=0)
    trailing_activation_roe: float = Field(6.0, gt=0)
    trailing_distance_roe: float = Field(2.5, gt=0)
    partial_profit_enabled: bool = False
    partial_profit_roe: float = Field(5.0, gt=0)
    partial_profit_percent: float = Field(50.0, gt=0, le=100)
    dynamic_tp_enabled: bool = True
    max_hold_time_minutes: float = Field(30.0, gt=0)
    time_exit_minutes: float = Field(5.0, gt=0)
    min_profit_usd: float = Field(0.1, ge=0)

    # Advisor exit review
    llm_exit_analysis_enabled: bool = False
    llm_exit_analysis_minutes: float = Field(2.0, gt=0)
    llm_exit_confidence_threshold: float = Field(80.0, ge=0, le=100)

    def to_config(self) -> ScalperConfig:
        """Freeze the current values into an evaluation snapshot"""
        return ScalperConfig(**self.model_dump())


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    model_config = {"env_file": ".env", "extra": "ignore"}

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_to_file: bool = True
    log_file_path: Path = Path("logs/scalper.log")
    log_max_size_mb: int = 100
    log_backup_count: int = 10
    log_format: str = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"


class SystemSettings(BaseSettings):
    """System settings"""
    model_config = {"env_file": ".env", "extra": "ignore"}

    agent_id: str = "scalper-1"
    user_id: str = "local"
    tick_interval_seconds: float = Field(15.0, gt=0)
    network_timeout_seconds: float = Field(10.0, gt=0)


class Settings(BaseSettings):
    """Main settings aggregator"""
    model_config = {"extra": "ignore"}  # Ignore extra env vars since they're loaded by nested classes

    # Sub-settings
    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    scalper: ScalperSettings = Field(default_factory=ScalperSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    system: SystemSettings = Field(default_factory=SystemSettings)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from environment"""
        return cls(
            exchange=ExchangeSettings(),
            llm=LLMSettings(),
            scalper=ScalperSettings(),
            logging=LoggingSettings(),
            system=SystemSettings(),
        )
