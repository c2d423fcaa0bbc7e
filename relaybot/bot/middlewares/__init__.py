from relaybot.bot.middlewares.db_session import DbSessionMiddleware
from relaybot.bot.middlewares.flood_control import FloodControlMiddleware
from relaybot.bot.middlewares.permissions import PermissionMiddleware
from relaybot.bot.middlewares.user_registry import UserRegistryMiddleware

__all__ = [
    "DbSessionMiddleware",
    "FloodControlMiddleware",
    "PermissionMiddleware",
    "UserRegistryMiddleware",
]
