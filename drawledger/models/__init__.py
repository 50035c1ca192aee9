from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .user import User  # noqa: F401
from .wallet import Wallet  # noqa: F401
from .transaction import LedgerTransaction  # noqa: F401
from .draw import Draw, Prize, Entry, Winner  # noqa: F401
from .withdrawal import WithdrawalRequest  # noqa: F401
from .setting import AppSetting  # noqa: F401

__all__ = [
    "Base",
    "User",
    "Wallet",
    "LedgerTransaction",
    "Draw",
    "Prize",
    "Entry",
    "Winner",
    "WithdrawalRequest",
    "AppSetting",
]
