"""Application layer: use-cases, ports and Telegram handlers."""
