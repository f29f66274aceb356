"""Affiliate commission ledger and payout lifecycle."""

from affiliate_ledger.auth import Caller
from affiliate_ledger.ledger import AffiliateLedger

__version__ = "0.1.0"

__all__ = ["AffiliateLedger", "Caller", "__version__"]
