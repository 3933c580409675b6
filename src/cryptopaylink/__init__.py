"""Non-custodial crypto payment links with on-chain verification."""

__version__ = "0.1.0"
