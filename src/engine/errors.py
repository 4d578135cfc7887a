"""Engine error taxonomy.

Every error the engine raises on purpose derives from EngineError so the API
layer can map the whole family in one place.
"""


class EngineError(Exception):
    """Base class for expected engine failures."""


class InsufficientDataError(EngineError):
    """Indicator input is empty."""


class DataUnavailableError(EngineError):
    """Market data provider failed and nothing is cached for the key."""


class LiveModeResetForbidden(EngineError):
    """Paper reset requested on a live-mode account."""


class ExecutionError(EngineError):
    """A live order failed (rejected, unfilled, or the venue is unreachable)."""


class InvalidTransition(EngineError):
    """Lifecycle command not allowed from the bot's current state."""


class InvalidConfigError(EngineError, ValueError):
    """Bot configuration or symbol failed validation."""


class ConfigConflictError(EngineError):
    """Compare-and-swap config write lost against a newer version."""


class PositionOpenError(EngineError):
    """Operation requires a flat account."""


class LiveTradingUnavailable(EngineError):
    """No live exchange is configured for this engine."""
