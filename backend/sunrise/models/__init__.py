from sunrise.models.user import User
from sunrise.models.account import Account
from sunrise.models.verification import Verification
from sunrise.models.role import UserRole

__all__ = [
    "User",
    "Account",
    "Verification",
    "UserRole",
]
