# fraud statistics - aggregate order history for a subject
# error rate, order count and payment method diversity, optionally over a trailing window

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import Float, Numeric, case, cast, distinct, func, select

from db.models import CREDIT_CARD_TYPE, Order, OrderStatus, PaymentMethod, User, db
from orderguard.intervals import parse_interval
from orderguard.subjects import CreditCardSubject, EmailSubject, IpSubject, UserSubject


@dataclass(frozen=True)
class FraudStats:
    """aggregate stats for one subject (zero-filled when there is no history)"""
    error_rate: float = 0.0
    number_of_orders: int = 0
    payment_method_rate: float = 0.0

    @classmethod
    def from_row(cls, row) -> 'FraudStats':
        # aggregates come back NULL when nothing matched
        return cls(
            error_rate=float(row.error_rate or 0),
            number_of_orders=int(row.number_of_orders or 0),
            payment_method_rate=float(row.payment_method_rate or 0),
        )

    def as_vector(self) -> tuple:
        """stats in limit-rule order: orders, error rate, payment method rate"""
        return (self.number_of_orders, self.error_rate, self.payment_method_rate)


class StatisticsProvider:
    """
    computes FraudStats for screening subjects

    subclasses implement one entry point per subject kind,
    compute_stats dispatches on the subject type
    """

    async def get_user_stats(self, user_id: int, interval: Optional[str] = None) -> FraudStats:
        raise NotImplementedError

    async def get_email_stats(self, email: str, interval: Optional[str] = None) -> FraudStats:
        raise NotImplementedError

    async def get_ip_stats(self, ip: str, interval: Optional[str] = None) -> FraudStats:
        raise NotImplementedError

    async def get_credit_card_stats(self, card: CreditCardSubject, interval: Optional[str] = None) -> FraudStats:
        raise NotImplementedError

    async def compute_stats(self, subject, interval: Optional[str] = None) -> FraudStats:
        if isinstance(subject, UserSubject):
            return await self.get_user_stats(subject.id, interval)
        if isinstance(subject, EmailSubject):
            return await self.get_email_stats(subject.address, interval)
        if isinstance(subject, IpSubject):
            return await self.get_ip_stats(subject.address, interval)
        if isinstance(subject, CreditCardSubject):
            return await self.get_credit_card_stats(subject, interval)
        raise TypeError(f"unsupported subject: {subject!r}")


# --- sql queries ---

def _stats_query(*filters, interval: Optional[str] = None, join_users: bool = False):
    """
    build the single-row aggregate query shared by every subject kind

    args:
        filters: subject specific where clauses
        interval: optional trailing window, e.g. "1 day"
        join_users: join the order creator (needed for email lookups)
    """
    error_rate = func.round(
        cast(func.coalesce(func.avg(case((Order.status == OrderStatus.ERROR.value, 1), else_=0)), 0), Numeric),
        5,
    )
    number_of_orders = func.count()
    # distinct cards (name + expiry year) per order, guarded against division by zero
    payment_method_rate = func.coalesce(
        cast(func.count(distinct(func.concat(PaymentMethod.name, PaymentMethod.data['expYear'].astext))), Float)
        / func.nullif(func.count(), 0),
        0,
    )

    query = (
        select(
            error_rate.label('error_rate'),
            number_of_orders.label('number_of_orders'),
            payment_method_rate.label('payment_method_rate'),
        )
        .select_from(Order)
        .outerjoin(PaymentMethod, PaymentMethod.id == Order.payment_method_id)
    )
    if join_users:
        query = query.outerjoin(User, User.id == Order.created_by_user_id)

    query = query.where(
        *filters,
        Order.deleted_at.is_(None),
        PaymentMethod.type == CREDIT_CARD_TYPE,
    )
    if interval:
        query = query.where(Order.created_at >= func.now() - parse_interval(interval))
    return query


def build_user_stats_query(user_id: int, interval: Optional[str] = None):
    return _stats_query(Order.created_by_user_id == user_id, interval=interval)


def build_email_stats_query(email: str, interval: Optional[str] = None):
    return _stats_query(func.lower(User.email).like(func.lower(email)), interval=interval, join_users=True)


def build_ip_stats_query(ip: str, interval: Optional[str] = None):
    return _stats_query(Order.data['reqIp'].astext.like(ip), interval=interval)


def build_credit_card_stats_query(card: CreditCardSubject, interval: Optional[str] = None):
    return _stats_query(
        PaymentMethod.name == card.name,
        PaymentMethod.data['expYear'].astext == str(card.exp_year),
        PaymentMethod.data['expMonth'].astext == str(card.exp_month),
        PaymentMethod.data['country'].astext == card.country,
        interval=interval,
    )


class SqlStatisticsProvider(StatisticsProvider):
    """stats straight from postgres, one aggregate query per call"""

    def __init__(self, database=db):
        self.db = database

    async def _fetch(self, query) -> FraudStats:
        async with self.db.async_session() as session:
            row = (await session.execute(query)).one()
        return FraudStats.from_row(row)

    async def get_user_stats(self, user_id, interval=None):
        return await self._fetch(build_user_stats_query(user_id, interval))

    async def get_email_stats(self, email, interval=None):
        return await self._fetch(build_email_stats_query(email, interval))

    async def get_ip_stats(self, ip, interval=None):
        return await self._fetch(build_ip_stats_query(ip, interval))

    async def get_credit_card_stats(self, card, interval=None):
        return await self._fetch(build_credit_card_stats_query(card, interval))


# --- in-memory provider ---

@dataclass
class OrderRecord:
    """flattened order row used by the in-memory provider"""
    status: str = OrderStatus.PAID.value
    created_by_user_id: Optional[int] = None
    email: Optional[str] = None
    req_ip: Optional[str] = None
    payment_method_type: str = CREDIT_CARD_TYPE
    payment_method_name: Optional[str] = None
    payment_method_data: Dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    deleted_at: Optional[datetime] = None


def like_to_regex(pattern: str, ignore_case: bool = False):
    """
    translate a sql LIKE pattern into a compiled regex

    % and _ are wildcards, a backslash makes the next character literal
    (postgres' default LIKE escape)
    """
    parts = []
    chars = iter(pattern)
    for char in chars:
        if char == '\\':
            # trailing backslash matches itself
            parts.append(re.escape(next(chars, '\\')))
        elif char == '%':
            parts.append('.*')
        elif char == '_':
            parts.append('.')
        else:
            parts.append(re.escape(char))
    return re.compile(''.join(parts), re.DOTALL | (re.IGNORECASE if ignore_case else 0))


class InMemoryStatisticsProvider(StatisticsProvider):
    """
    same semantics as the sql provider over a list of OrderRecord

    handy for local runs and tests where no database is around
    """

    def __init__(self, orders: List[OrderRecord] = None, clock: Callable[[], datetime] = datetime.now):
        self.orders = list(orders or [])
        self.clock = clock

    def add(self, order: OrderRecord):
        self.orders.append(order)

    def _aggregate(self, predicate, interval: Optional[str]) -> FraudStats:
        since = None
        if interval:
            since = self.clock() - parse_interval(interval)

        matching = [
            order for order in self.orders
            if order.deleted_at is None
            and order.payment_method_type == CREDIT_CARD_TYPE
            and (since is None or order.created_at >= since)
            and predicate(order)
        ]

        total = len(matching)
        if total == 0:
            return FraudStats()

        errors = sum(1 for order in matching if order.status == OrderStatus.ERROR.value)
        cards = {
            f"{order.payment_method_name or ''}{order.payment_method_data.get('expYear', '')}"
            for order in matching
        }
        return FraudStats(
            error_rate=round(errors / total, 5),
            number_of_orders=total,
            payment_method_rate=len(cards) / total,
        )

    async def get_user_stats(self, user_id, interval=None):
        return self._aggregate(lambda order: order.created_by_user_id == user_id, interval)

    async def get_email_stats(self, email, interval=None):
        pattern = like_to_regex(email, ignore_case=True)
        return self._aggregate(
            lambda order: order.email is not None and pattern.fullmatch(order.email) is not None,
            interval,
        )

    async def get_ip_stats(self, ip, interval=None):
        pattern = like_to_regex(ip)
        return self._aggregate(
            lambda order: order.req_ip is not None and pattern.fullmatch(order.req_ip) is not None,
            interval,
        )

    async def get_credit_card_stats(self, card, interval=None):
        def matches(order: OrderRecord) -> bool:
            data = order.payment_method_data
            return (
                order.payment_method_name == card.name
                and str(data.get('expYear')) == str(card.exp_year)
                and str(data.get('expMonth')) == str(card.exp_month)
                and data.get('country') == card.country
            )
        return self._aggregate(matches, interval)
