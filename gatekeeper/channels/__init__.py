"""Chat channel and device event adapters."""
