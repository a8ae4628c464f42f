"""Magic link strategy configuration.

The immutable policy object consumed by both the token issuer and the
redemption engine. Validated once at construction; a strategy that fails
validation never exists.

Rules:
1. identity_field is a uniquely constrained column of the resource
2. token_lifetime is a positive duration
3. Action names (explicit or derived from the strategy name) are valid
   identifiers and distinct from each other
4. The resource has a single-column primary key (tokens embed it as sub)
"""

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from sqlalchemy import UniqueConstraint
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import NoInspectionAvailable

from magiclink.core.config import Settings
from magiclink.core.magic_link_errors import StrategyConfigurationError

# Fixed purpose tag for every token issued by this strategy
MAGIC_LINK_PURPOSE = "magic_link"

DEFAULT_STRATEGY_NAME = "magic_link"
DEFAULT_TOKEN_LIFETIME = timedelta(minutes=10)

_ACTION_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


class IdentityComparison(StrEnum):
    """Equality rule applied to identity-field values.

    - exact: byte-for-byte string equality
    - case_insensitive: Unicode casefold before comparing
    - normalized: NFKC, surrounding whitespace stripped, then casefold
    """

    EXACT = "exact"
    CASE_INSENSITIVE = "case_insensitive"
    NORMALIZED = "normalized"

    def normalize(self, value: object) -> str:
        """Return the canonical form of an identity value under this rule."""
        text = str(value)
        if self is IdentityComparison.EXACT:
            return text
        if self is IdentityComparison.NORMALIZED:
            text = unicodedata.normalize("NFKC", text).strip()
        return text.casefold()

    def matches(self, left: object, right: object) -> bool:
        """Check whether two identity values are equal under this rule."""
        return self.normalize(left) == self.normalize(right)


@dataclass(frozen=True)
class MagicLinkStrategy:
    """Validated, immutable magic link policy for one resource type.

    Attributes:
        resource: SQLAlchemy mapped account class the strategy protects.
        name: Strategy name. Derived action names are built from it.
        identity_field: Column used as the uniqueness anchor (e.g. email).
        identity_comparison: Equality rule for identity values.
        token_lifetime: How long an issued token stays redeemable.
        single_use: Whether each token may be redeemed at most once.
        prevent_hijacking: Whether to reject redemptions that would attach
            to an account other than the one the token was issued for.
        registration_enabled: Whether redeeming a token for an unknown
            identity may create the account.
        request_action_name: Action that issues tokens. Defaults to
            ``request_<name>``.
        sign_in_action_name: Action recorded in token claims. Defaults to
            ``sign_in_with_<name>``.
        token_param_name: Request parameter that carries the token.
        confirmed_at_field: Column recording proven ownership of the
            identity. None disables the confirmation check.
    """

    resource: type
    name: str = DEFAULT_STRATEGY_NAME
    identity_field: str = "email"
    identity_comparison: IdentityComparison = IdentityComparison.CASE_INSENSITIVE
    token_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME
    single_use: bool = True
    prevent_hijacking: bool = True
    registration_enabled: bool = False
    request_action_name: str | None = None
    sign_in_action_name: str | None = None
    token_param_name: str = "token"
    confirmed_at_field: str | None = "email_verified"
    primary_key_field: str = field(init=False, default="")

    def __post_init__(self) -> None:
        # Frozen dataclass: derived values are assigned through object.__setattr__
        try:
            comparison = IdentityComparison(self.identity_comparison)
        except ValueError as exc:
            msg = f"Unknown identity comparison: {self.identity_comparison!r}"
            raise StrategyConfigurationError(msg) from exc
        object.__setattr__(self, "identity_comparison", comparison)

        if not isinstance(self.name, str) or not _ACTION_NAME_RE.match(self.name):
            msg = f"Strategy name must be a lowercase identifier, got {self.name!r}"
            raise StrategyConfigurationError(msg)

        object.__setattr__(
            self,
            "request_action_name",
            self.request_action_name or f"request_{self.name}",
        )
        object.__setattr__(
            self,
            "sign_in_action_name",
            self.sign_in_action_name or f"sign_in_with_{self.name}",
        )
        object.__setattr__(self, "primary_key_field", self._validate_resource())
        self._validate_lifetime()
        self._validate_action_names()

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_resource(self) -> str:
        """Check the resource's columns and return its primary key attribute."""
        try:
            mapper = sa_inspect(self.resource)
        except NoInspectionAvailable as exc:
            msg = f"{self.resource!r} is not a mapped resource class"
            raise StrategyConfigurationError(msg) from exc

        columns = mapper.columns
        if self.identity_field not in columns:
            msg = (
                f"Identity field {self.identity_field!r} is not an attribute "
                f"of {self.resource.__name__}"
            )
            raise StrategyConfigurationError(msg)

        if not _is_uniquely_constrained(mapper, columns[self.identity_field]):
            msg = (
                f"Identity field {self.identity_field!r} on "
                f"{self.resource.__name__} must be uniquely constrained"
            )
            raise StrategyConfigurationError(msg)

        if self.confirmed_at_field is not None and self.confirmed_at_field not in columns:
            msg = (
                f"Confirmation field {self.confirmed_at_field!r} is not an "
                f"attribute of {self.resource.__name__}"
            )
            raise StrategyConfigurationError(msg)

        if len(mapper.primary_key) != 1:
            msg = f"{self.resource.__name__} must have a single-column primary key"
            raise StrategyConfigurationError(msg)
        return mapper.get_property_by_column(mapper.primary_key[0]).key

    def _validate_lifetime(self) -> None:
        if not isinstance(self.token_lifetime, timedelta):
            msg = f"token_lifetime must be a timedelta, got {self.token_lifetime!r}"
            raise StrategyConfigurationError(msg)
        if self.token_lifetime <= timedelta(0):
            msg = f"token_lifetime must be positive, got {self.token_lifetime}"
            raise StrategyConfigurationError(msg)

    def _validate_action_names(self) -> None:
        for label, value in (
            ("request_action_name", self.request_action_name),
            ("sign_in_action_name", self.sign_in_action_name),
        ):
            if not _ACTION_NAME_RE.match(value or ""):
                msg = f"{label} must be a lowercase identifier, got {value!r}"
                raise StrategyConfigurationError(msg)
        if self.request_action_name == self.sign_in_action_name:
            msg = (
                "request_action_name and sign_in_action_name must differ, "
                f"both are {self.sign_in_action_name!r}"
            )
            raise StrategyConfigurationError(msg)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_settings(
        cls, resource: type, settings: Settings, **overrides: Any
    ) -> "MagicLinkStrategy":
        """Build a strategy from application settings.

        Args:
            resource: Mapped account class.
            settings: Application settings with magic_link_* defaults.
            **overrides: Explicit field values that win over settings.

        Returns:
            Validated MagicLinkStrategy.

        Raises:
            StrategyConfigurationError: If the resulting policy is invalid.
        """
        values: dict[str, Any] = {
            "identity_field": settings.magic_link_identity_field,
            "identity_comparison": settings.magic_link_identity_comparison,
            "token_lifetime": timedelta(
                minutes=settings.magic_link_token_lifetime_minutes
            ),
            "single_use": settings.magic_link_single_use,
            "prevent_hijacking": settings.magic_link_prevent_hijacking,
            "registration_enabled": settings.magic_link_registration_enabled,
        }
        values.update(overrides)
        return cls(resource=resource, **values)

    # =========================================================================
    # Account accessors
    # =========================================================================

    def is_resource(self, account: object) -> bool:
        """Check that an object is an instance of the protected resource."""
        return isinstance(account, self.resource)

    def identity_of(self, account: object) -> Any:
        """Return the account's current identity-field value."""
        return getattr(account, self.identity_field)

    def primary_key_of(self, account: object) -> Any:
        """Return the account's primary key value."""
        return getattr(account, self.primary_key_field)

    def confirmed_at_of(self, account: object) -> datetime | None:
        """Return when the account's identity was confirmed, if ever."""
        if self.confirmed_at_field is None:
            return None
        return getattr(account, self.confirmed_at_field, None)


def _is_uniquely_constrained(mapper: Any, column: Any) -> bool:
    """Check that a column alone is unique on its table."""
    if column.unique or (column.primary_key and len(mapper.primary_key) == 1):
        return True

    table = mapper.local_table
    for constraint in table.constraints:
        if isinstance(constraint, UniqueConstraint) and _is_sole_column(
            constraint.columns, column
        ):
            return True
    return any(
        index.unique and _is_sole_column(index.columns, column)
        for index in table.indexes
    )


def _is_sole_column(columns: Any, column: Any) -> bool:
    names = [c.name for c in columns]
    return names == [column.name]
