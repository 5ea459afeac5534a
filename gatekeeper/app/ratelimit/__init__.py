"""Rate limiter adapters (Redis sliding window, in-memory) and backend selection."""
