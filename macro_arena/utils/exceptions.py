class ArenaError(Exception):
    pass


class ConfigError(ArenaError):
    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"Configuration error: {self.message}"


class BacktestSetupError(ArenaError):
    """Run-level precondition failure, raised before the simulation loop starts."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class InvocationError(ArenaError):
    def __init__(self, message: str, model: str) -> None:
        self.message = message
        self.model = model
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.model}] {self.message}"


class TransportError(InvocationError):
    def __init__(self, message: str, model: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message, model)


class AuthenticationError(InvocationError):
    pass


class MalformedOutputError(InvocationError):
    def __init__(self, message: str, model: str, raw_text: str = "") -> None:
        self.raw_text = raw_text
        super().__init__(message, model)


class UnsupportedProviderError(InvocationError):
    def __init__(self, provider: str, model: str) -> None:
        self.provider = provider
        super().__init__(f"Unsupported provider: {provider}", model)
