# configuration management using pydantic settings
# reads from .env file and provides type-safe config

from dataclasses import dataclass
from typing import Tuple

from pydantic_settings import BaseSettings

from db.models import AssetType
from orderguard.limits import LimitRule, parse_limit_rules


class Settings(BaseSettings):
    """app configuration loaded from environment variables"""

    # DATABASE_URL is read by db.models

    # block orders (instead of only logging) when a check fails or an asset is suspended
    fraud_enforce_suspended_asset: bool = False

    # limit rules per subject kind, json list of [interval, maxOrders, maxErrorRate, maxPaymentMethodRate]
    fraud_order_user: str = '[["1 month", 10, 0.6, 0.2], ["1 week", 5, 0.5, 0.25]]'
    fraud_order_card: str = '[["1 month", 10, 0.6, 0.2], ["1 day", 5, 0.5, 0.25]]'
    fraud_order_ip: str = '[["1 month", 15, 0.6, 0.2], ["1 day", 5, 0.5, 0.3]]'
    fraud_order_email: str = '[["1 month", 10, 0.6, 0.2], ["1 week", 5, 0.5, 0.25]]'

    # use the first X-Forwarded-For entry as client ip (only behind a trusted proxy)
    trust_forwarded_for: bool = False

    log_level: str = "INFO"

    # api settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    class Config:
        env_file = ".env"  # load from .env file
        case_sensitive = False  # DATABASE_URL and database_url both work
        extra = 'ignore'  # ignore extra fields in .env


@dataclass(frozen=True)
class FraudConfig:
    """parsed fraud settings handed to the gate"""
    enforce_suspended_asset: bool = False
    user_limits: Tuple[LimitRule, ...] = ()
    card_limits: Tuple[LimitRule, ...] = ()
    ip_limits: Tuple[LimitRule, ...] = ()
    email_limits: Tuple[LimitRule, ...] = ()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'FraudConfig':
        return cls(
            enforce_suspended_asset=settings.fraud_enforce_suspended_asset,
            user_limits=tuple(parse_limit_rules(settings.fraud_order_user)),
            card_limits=tuple(parse_limit_rules(settings.fraud_order_card)),
            ip_limits=tuple(parse_limit_rules(settings.fraud_order_ip)),
            email_limits=tuple(parse_limit_rules(settings.fraud_order_email)),
        )

    def limits_for(self, asset_type: AssetType) -> Tuple[LimitRule, ...]:
        return {
            AssetType.USER: self.user_limits,
            AssetType.CREDIT_CARD: self.card_limits,
            AssetType.IP: self.ip_limits,
            AssetType.EMAIL_ADDRESS: self.email_limits,
        }[AssetType(asset_type)]


# global settings instance
settings = Settings()
