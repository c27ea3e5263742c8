"""SOL SMITH: Telegram bot for Solana vanity wallet generation."""

__version__ = "0.1.0"
