from macro_arena.utils.exceptions import (
    ArenaError,
    AuthenticationError,
    BacktestSetupError,
    ConfigError,
    InvocationError,
    MalformedOutputError,
    TransportError,
    UnsupportedProviderError,
)
from macro_arena.utils.logging import setup_logging

__all__ = [
    "ArenaError",
    "AuthenticationError",
    "BacktestSetupError",
    "ConfigError",
    "InvocationError",
    "MalformedOutputError",
    "TransportError",
    "UnsupportedProviderError",
    "setup_logging",
]
