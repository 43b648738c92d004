"""
Exceptions
==========
Error taxonomy for the signal engine.

Recoverable errors (bad ticks, short history, slow providers) are handled
per asset and never stop a cycle. ConfigurationError is raised at startup
only; UnknownAssetError signals API misuse.
"""


class SignalEngineError(Exception):
    """Base class for all engine errors."""


class InvalidTickError(SignalEngineError, ValueError):
    """Malformed or out-of-order tick. The tick is dropped."""

    def __init__(self, asset: str, reason: str):
        self.asset = asset
        self.reason = reason
        super().__init__(f"Invalid tick for {asset}: {reason}")


class InsufficientHistoryError(SignalEngineError):
    """Not enough history to compute the requested value."""

    def __init__(self, asset: str, required: int, available: int):
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            f"{asset} has {available} points, {required} required"
        )


class ExternalFetchTimeout(SignalEngineError):
    """External data call exceeded its timeout."""

    def __init__(self, asset: str, operation: str, timeout: float):
        self.asset = asset
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} for {asset} timed out after {timeout:.1f}s")


class ConfigurationError(SignalEngineError):
    """Invalid configuration. Fatal at startup."""


class UnknownAssetError(SignalEngineError, KeyError):
    """Lookup of a symbol the engine does not track."""

    def __init__(self, asset: str):
        self.asset = asset
        super().__init__(asset)

    def __str__(self):
        return f"Unknown asset: {self.asset}"
