"""Track Solana Improvement Documents from their GitHub repository."""

__version__ = "0.1.0"
