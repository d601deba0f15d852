"""Telegram bot surface."""
