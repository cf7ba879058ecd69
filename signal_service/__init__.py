"""Live candle signal service: feed connection, processors and persistence."""
