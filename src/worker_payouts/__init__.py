"""Worker payout pipeline: fee split, earnings ledger and provider payouts."""

__version__ = "0.1.0"
