"""Backtest LLM forecasters on historical economic data, scored by an LLM judge."""

__version__ = "0.1.0"
