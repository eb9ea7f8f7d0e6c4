"""Credit package catalogue."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    credits: int
    price_in_cents: int
    savings: Optional[str] = None
    popular: bool = False

    @property
    def price(self) -> str:
        return f"${self.price_in_cents / 100:.2f}"

    @property
    def price_per_credit(self) -> str:
        return f"${self.price_in_cents / 100 / self.credits:.2f}"

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["price"] = self.price
        payload["price_per_credit"] = self.price_per_credit
        return payload


CREDIT_PACKAGES: Tuple[CreditPackage, ...] = (
    CreditPackage(id="starter", name="Starter Pack", credits=50, price_in_cents=999),
    CreditPackage(id="popular", name="Popular Pack", credits=150, price_in_cents=2499, savings="15%", popular=True),
    CreditPackage(id="pro", name="Pro Pack", credits=500, price_in_cents=6999, savings="30%"),
    CreditPackage(id="enterprise", name="Enterprise Pack", credits=1000, price_in_cents=11999, savings="40%"),
)


def get_package(package_id: str) -> Optional[CreditPackage]:
    for package in CREDIT_PACKAGES:
        if package.id == package_id:
            return package
    return None
