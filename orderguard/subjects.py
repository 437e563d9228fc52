# screening subjects - the things fraud checks are run against
# every subject knows its asset type and a stable fingerprint used as the suspension key

from dataclasses import dataclass
from typing import Optional

from db.models import AssetType

CARD_FINGERPRINT_DELIMITER = '-'


def normalize_fingerprint(asset_type: AssetType, value: str) -> str:
    """apply the same normalization subjects use (emails are case-insensitive)"""
    if AssetType(asset_type) == AssetType.EMAIL_ADDRESS:
        return value.lower()
    return value


@dataclass(frozen=True)
class UserSubject:
    id: int

    asset_type = AssetType.USER

    @property
    def fingerprint(self) -> str:
        return str(self.id)

    def describe(self) -> str:
        return f"User #{self.id}"


@dataclass(frozen=True)
class EmailSubject:
    address: str

    asset_type = AssetType.EMAIL_ADDRESS

    @property
    def fingerprint(self) -> str:
        return normalize_fingerprint(self.asset_type, self.address)

    def describe(self) -> str:
        return f"email {self.address}"


@dataclass(frozen=True)
class IpSubject:
    address: str

    asset_type = AssetType.IP

    @property
    def fingerprint(self) -> str:
        return self.address

    def describe(self) -> str:
        return f"IP {self.address}"


@dataclass(frozen=True)
class CreditCardSubject:
    """
    card identity as seen on a payment method

    name/exp_year/exp_month/country select the card's order history,
    token (the processor's card fingerprint) wins over the derived fingerprint
    """
    name: str
    exp_year: int
    exp_month: int
    country: Optional[str] = None
    brand: Optional[str] = None
    funding: Optional[str] = None
    token: Optional[str] = None

    asset_type = AssetType.CREDIT_CARD

    @classmethod
    def from_payment_method(cls, payment_method) -> 'CreditCardSubject':
        info = payment_method.credit_card_info
        return cls(
            name=payment_method.name,
            exp_year=info.exp_year,
            exp_month=info.exp_month,
            country=info.country,
            brand=info.brand,
            funding=info.funding,
            token=info.fingerprint,
        )

    @property
    def fingerprint(self) -> str:
        if self.token:
            return self.token
        parts = [self.name, self.brand, self.exp_month, self.exp_year, self.funding]
        return CARD_FINGERPRINT_DELIMITER.join(str(part) for part in parts if part is not None)

    def describe(self) -> str:
        return f"Credit Card {self.fingerprint}"
