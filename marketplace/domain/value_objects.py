"""Value objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Self

from marketplace.domain.base import ValueObject
from marketplace.domain.exceptions import (
    CurrencyMismatchError,
    InvalidOfferError,
    NegativeMoneyError,
)

DEFAULT_CURRENCY = "INR"


# ============================================================================
# Money
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Represents monetary value with currency.

    Money is stored in the smallest currency unit (paise for INR)
    to avoid floating-point precision issues.

    Attributes:
        amount_cents: Amount in smallest currency unit.
        currency: ISO 4217 currency code.
    """

    amount_cents: int
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        """Validate money constraints."""
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create zero amount money."""
        return cls(amount_cents=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount: Decimal, currency: str = DEFAULT_CURRENCY) -> Self:
        """Create money from decimal amount in major units.

        Args:
            amount: Decimal amount (e.g., rupees).
            currency: Currency code.

        Returns:
            Money instance.
        """
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return cls(amount_cents=cents, currency=currency)

    def to_decimal(self) -> Decimal:
        """Convert to decimal amount in major units."""
        return Decimal(self.amount_cents) / 100

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        """Add two money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
        """
        self._check_currency(other)
        return Money(self.amount_cents + other.amount_cents, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        """Subtract money amounts.

        Raises:
            CurrencyMismatchError: If currencies don't match.
            NegativeMoneyError: If result would be negative.
        """
        self._check_currency(other)
        return Money(self.amount_cents - other.amount_cents, self.currency)

    def __mul__(self, quantity: int) -> "Money":
        return Money(self.amount_cents * quantity, self.currency)

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount_cents < other.amount_cents

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount_cents <= other.amount_cents

    def __str__(self) -> str:
        return f"{self.to_decimal():.2f} {self.currency}"


# ============================================================================
# Catalog References
# ============================================================================


class OfferCondition(str, Enum):
    """Condition of the item a seller is offering."""

    NEW = "New"
    USED_LIKE_NEW = "Used-Like-New"
    USED_GOOD = "Used-Good"
    REFURBISHED = "Refurbished"


@dataclass(frozen=True)
class ProductRef(ValueObject):
    """Read-only view of a catalog product.

    Attributes:
        id: Product identifier.
        title: Display title.
        base_price: List price (MRP), shown when no offer exists.
        category: Category name.
        brand: Brand name.
    """

    id: str
    title: str
    base_price: Money
    category: str | None = None
    brand: str | None = None


@dataclass(frozen=True)
class Deal(ValueObject):
    """A time-boxed discounted price on an offer.

    The window is inclusive on both ends.
    """

    price: Money
    starts_at: datetime
    ends_at: datetime

    def __post_init__(self) -> None:
        if self.starts_at >= self.ends_at:
            raise InvalidOfferError(
                "Deal start must be before deal end",
                details={
                    "deal_start_at": self.starts_at.isoformat(),
                    "deal_end_at": self.ends_at.isoformat(),
                },
            )

    @classmethod
    def from_fields(
        cls,
        price: Money | None,
        starts_at: datetime | None,
        ends_at: datetime | None,
    ) -> "Deal | None":
        """Build a deal from its three optional fields.

        Args:
            price: Deal price.
            starts_at: Start of the deal window.
            ends_at: End of the deal window.

        Returns:
            Deal, or None when no field is set.

        Raises:
            InvalidOfferError: If only some of the fields are set.
        """
        fields = (price, starts_at, ends_at)
        if all(value is None for value in fields):
            return None
        if any(value is None for value in fields):
            raise InvalidOfferError(
                "Deal price, start and end must be set together",
                details={
                    "deal_price_set": price is not None,
                    "deal_start_at_set": starts_at is not None,
                    "deal_end_at_set": ends_at is not None,
                },
            )
        return cls(price=price, starts_at=starts_at, ends_at=ends_at)

    def is_active(self, now: datetime) -> bool:
        """Check whether the deal window contains ``now``."""
        return self.starts_at <= now <= self.ends_at


# ============================================================================
# Address Snapshot
# ============================================================================


@dataclass(frozen=True)
class Address(ValueObject):
    """Denormalized shipping address copied into an order.

    Later edits in the address book never change a placed order.
    """

    id: str
    recipient_name: str
    line1: str
    city: str
    postal_code: str
    country: str
    line2: str | None = None
    state: str | None = None
    phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            recipient_name=data["recipient_name"],
            line1=data["line1"],
            line2=data.get("line2"),
            city=data["city"],
            state=data.get("state"),
            postal_code=data["postal_code"],
            country=data["country"],
            phone=data.get("phone"),
        )


# ============================================================================
# Identity
# ============================================================================


class ActorRole(str, Enum):
    """Role of the authenticated caller, decided per request."""

    USER = "user"
    SELLER = "seller"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor(ValueObject):
    """Authenticated caller supplied by the identity collaborator."""

    id: str
    role: ActorRole = ActorRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_seller(self) -> bool:
        return self.role == ActorRole.SELLER

    @classmethod
    def system(cls) -> Self:
        """Actor used for scheduled and gateway-driven changes."""
        return cls(id="system", role=ActorRole.ADMIN)
