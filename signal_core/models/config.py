"""Decision engine configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SignalConfig(BaseModel):
    """Indicator periods and thresholds used by the decision engine.

    Defaults are the published parameters of the rule set.
    """

    model_config = ConfigDict(frozen=True)

    # Indicator periods
    support_resistance_period: int = 25
    donchian_period: int = 20
    bollinger_period: int = 14
    bollinger_std_dev: float = 2.0
    stochastic_k_period: int = 13
    stochastic_d_period: int = 3
    stochastic_smoothing: int = 3
    rsi_period: int = 14

    # Minimum window before anything but HOLD is possible
    min_candles: int = 20

    # Thresholds
    near_zone_threshold: float = 0.9
    stochastic_overbought: float = 80.0
    stochastic_oversold: float = 20.0
    consecutive_threshold: int = 3
