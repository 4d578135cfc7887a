from .system import router as system_router  # noqa: F401
from .bot_control import router as bot_router  # noqa: F401
from .market import router as market_router  # noqa: F401

__all__ = ["system_router", "bot_router", "market_router"]
