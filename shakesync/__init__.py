"""Building blocks for moving Redis data: options, filters, command batching, metrics, scanners and decoding."""

__version__ = "0.1.0"