"""Signal decision models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class SignalType(str, Enum):
    """Directional signal produced by the decision engine."""

    PUT = "PUT"  # sell, resistance zone
    CALL = "CALL"  # buy, support zone
    HOLD = "HOLD"


class DonchianBreakout(BaseModel):
    model_config = ConfigDict(frozen=True)

    upper: bool = False
    lower: bool = False


class BollingerPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    above_upper: bool = False
    below_lower: bool = False


class StochasticPosition(BaseModel):
    model_config = ConfigDict(frozen=True)

    overbought: bool = False
    oversold: bool = False
    k_value: float = 0.0


class SignalDetails(BaseModel):
    """Every intermediate value the decision was based on."""

    model_config = ConfigDict(frozen=True)

    is_near_resistance: bool = False
    is_near_support: bool = False
    resistance_zone_height: float = 0.0
    support_zone_height: float = 0.0
    resistance_zone_position: float = 0.0
    support_zone_position: float = 0.0
    donchian_breakout: DonchianBreakout = DonchianBreakout()
    bollinger_position: BollingerPosition = BollingerPosition()
    stochastic_position: StochasticPosition = StochasticPosition()
    consecutive_candles: int = 0
    rsi_value: float = 0.0
    above_upper_bb: bool = False
    below_lower_bb: bool = False

    @classmethod
    def empty(cls) -> "SignalDetails":
        """Details with every flag false and every value zero."""
        return cls()


class SignalResult(BaseModel):
    """Outcome of one decision engine evaluation."""

    model_config = ConfigDict(frozen=True)

    signal: SignalType
    details: SignalDetails

    @classmethod
    def hold(cls) -> "SignalResult":
        """HOLD result with empty details (insufficient or unusable data)."""
        return cls(signal=SignalType.HOLD, details=SignalDetails.empty())


class TradeSignal(BaseModel):
    """Formatted signal ready for logging and persistence."""

    model_config = ConfigDict(frozen=True)

    message: str
    created: datetime
    instrument_id: int
    instrument_name: str
    display_name: str
    image_url: str = ""
    action: str  # "BUY" | "SELL"
    zone: str  # "Support zone" | "Resistance zone"
    timeframe: str  # "oneMinute" | "fiveMinutes"
    is_otc: bool = False
