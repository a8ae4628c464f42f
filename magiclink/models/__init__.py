"""SQLAlchemy ORM models.

All models are exported from this module for convenient imports:
    from magiclink.models import User, RedeemedToken

- user.py: User (the account resource, identity field = email)
- redeemed_token.py: RedeemedToken (single-use markers)
"""

from magiclink.models.base import Base, TimestampMixin
from magiclink.models.redeemed_token import RedeemedToken
from magiclink.models.user import User

__all__ = [
    "Base",
    "RedeemedToken",
    "TimestampMixin",
    "User",
]
