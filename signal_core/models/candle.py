"""Candle (OHLC bar) and instrument reference models."""

from pydantic import BaseModel, ConfigDict


class Candle(BaseModel):
    """Fixed-duration OHLC price bar for one instrument."""

    model_config = ConfigDict(frozen=True)

    open_time: int  # Unix timestamp in seconds
    open: float
    high: float
    low: float
    close: float

    @property
    def is_green(self) -> bool:
        """Check if the candle closed above its open."""
        return self.close > self.open

    @property
    def is_red(self) -> bool:
        """Check if the candle closed below its open."""
        return self.close < self.open

    @property
    def is_doji(self) -> bool:
        """Check if the candle closed exactly at its open."""
        return self.close == self.open


class Instrument(BaseModel):
    """Tradable instrument as reported by the feed.

    Reference data, replaced wholesale on every supervisor refresh.
    ``id`` may be missing in feed payloads; such instruments are never processed.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    name: str = ""
    display_name: str | None = None
    is_otc: bool = False
    image_url: str = ""

    def with_metadata(self, metadata: "Instrument | None") -> "Instrument":
        """Overlay display name, OTC flag and image from a metadata lookup."""
        if metadata is None:
            return self
        return self.model_copy(
            update={
                "display_name": metadata.display_name or metadata.name or self.display_name,
                "is_otc": metadata.is_otc,
                "image_url": metadata.image_url or self.image_url,
            }
        )


class ProcessorKey(BaseModel):
    """Identity of an instrument processor: (instrument id, candle size)."""

    model_config = ConfigDict(frozen=True)

    instrument_id: int
    candle_size: int  # seconds

    def __str__(self) -> str:
        return f"{self.instrument_id}-{self.candle_size}"
