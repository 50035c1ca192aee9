from . import admin, draws, user, wallet

__all__ = ["admin", "draws", "user", "wallet"]
