"""Token prices of billable actions and the purchasable token packages."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal


@dataclass(frozen=True)
class TokenPricing:
    project_creation: Decimal = Decimal("1.5")
    chat_analysis: Decimal = Decimal("0.5")
    preview_build: Decimal = Decimal("0")
    deployment: Decimal = Decimal("0")
    daily_reset: Decimal = Decimal("5")


TOKEN_PRICING = TokenPricing()

# Actions a caller may price by name
BILLABLE_ACTIONS = ("project_creation", "chat_analysis", "preview_build", "deployment")


@dataclass(frozen=True)
class TokenPackage:
    id: str
    name: str
    tokens: int
    price_thb: Decimal
    price_usd: Decimal
    bonus_tokens: int = 0
    popular: bool = False

    @property
    def total_tokens(self) -> int:
        return self.tokens + self.bonus_tokens


TOKEN_PACKAGES: tuple[TokenPackage, ...] = (
    TokenPackage("starter", "Starter Pack", 20, Decimal("299"), Decimal("9.99")),
    TokenPackage("pro", "Pro Pack", 50, Decimal("649"), Decimal("19.99"), bonus_tokens=5, popular=True),
    TokenPackage("business", "Business Pack", 150, Decimal("1699"), Decimal("49.99"), bonus_tokens=25),
    TokenPackage("enterprise", "Enterprise Pack", 500, Decimal("4999"), Decimal("149.99"), bonus_tokens=100),
)


def calculate_token_cost(action: str, quantity: int = 1) -> Decimal:
    if action not in BILLABLE_ACTIONS:
        raise ValueError(f"Unknown billable action: {action}")
    if quantity < 0:
        raise ValueError("quantity must be non-negative")
    return getattr(TOKEN_PRICING, action) * quantity


def has_enough_tokens(balance: Decimal, action: str, quantity: int = 1) -> bool:
    return Decimal(balance) >= calculate_token_cost(action, quantity)


def get_project_creation_cost() -> Decimal:
    return TOKEN_PRICING.project_creation


def get_package(package_id: str) -> TokenPackage | None:
    return next((package for package in TOKEN_PACKAGES if package.id == package_id), None)


def _unit_price(package: TokenPackage, currency: str) -> Decimal:
    price = package.price_thb if currency.upper() == "THB" else package.price_usd
    return price / package.total_tokens


def get_price_per_token(package: TokenPackage, currency: str = "THB") -> Decimal:
    """Price of one token, bonus tokens included, rounded to cents."""
    return _unit_price(package, currency).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def get_best_value_package(currency: str = "THB") -> TokenPackage:
    return min(TOKEN_PACKAGES, key=lambda package: _unit_price(package, currency))
