"""
Quote execution layer - signing, validation and fillable quote construction
"""

from .fillable import FillableQuoteBuilder
from .signing import AccountSigner, QuoteSigner, TypedDataSigner, Web3Signer, quote_hash
from .validator import QuoteValidator

__all__ = [
    "AccountSigner",
    "FillableQuoteBuilder",
    "QuoteSigner",
    "QuoteValidator",
    "TypedDataSigner",
    "Web3Signer",
    "quote_hash",
]
