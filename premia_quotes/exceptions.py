"""
Premia quote exceptions

Custom exception classes raised while ranking, validating and building quotes.
"""


class QuoteError(Exception):
    """Base exception for quote handling."""
    pass


class InvalidConfiguration(QuoteError, ValueError):
    """Comparator called with an impossible size configuration."""
    pass


class IncompatibleDirection(QuoteError, ValueError):
    """Quotes with opposite trade direction cannot be ranked."""
    pass


class InvalidQuote(QuoteError):
    """Quote rejected by the on-chain validity check."""
    pass


class ConfigurationError(QuoteError):
    """Missing RPC endpoint, address or other required setting."""
    pass


class RelayError(QuoteError):
    """Orderbook relay returned an error or could not be reached."""
    pass


class PoolKeyMismatchWarning(UserWarning):
    """Quotes compared belong to different pools."""
    pass
