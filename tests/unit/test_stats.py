# unit tests for fraud statistics
# in-memory provider semantics plus the sql the postgres provider sends

import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

from sqlalchemy.dialects import postgresql

from orderguard.stats import (
    FraudStats,
    InMemoryStatisticsProvider,
    OrderRecord,
    build_credit_card_stats_query,
    build_email_stats_query,
    build_ip_stats_query,
    build_user_stats_query,
    like_to_regex,
)
from orderguard.subjects import CreditCardSubject, EmailSubject, IpSubject, UserSubject

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _order(**overrides):
    fields = dict(
        created_by_user_id=1,
        email="jane@example.com",
        req_ip="10.0.0.1",
        payment_method_name="Jane Doe",
        payment_method_data={"expYear": "2030", "expMonth": "3", "country": "US"},
        created_at=NOW - timedelta(hours=1),
    )
    fields.update(overrides)
    return OrderRecord(**fields)


@pytest.fixture
def provider():
    return InMemoryStatisticsProvider(clock=lambda: NOW)


async def test_no_orders_gives_zero_stats(provider):
    stats = await provider.get_user_stats(1)

    assert stats == FraudStats(error_rate=0.0, number_of_orders=0, payment_method_rate=0.0)


async def test_error_rate_and_count(provider):
    provider.add(_order(status="ERROR"))
    provider.add(_order(status="ERROR"))
    provider.add(_order(status="PAID"))
    provider.add(_order(status="PAID"))

    stats = await provider.get_user_stats(1)

    assert stats.number_of_orders == 4
    assert stats.error_rate == 0.5


async def test_error_rate_is_rounded(provider):
    provider.add(_order(status="ERROR"))
    provider.add(_order())
    provider.add(_order())

    stats = await provider.get_user_stats(1)

    assert stats.error_rate == 0.33333


async def test_payment_method_rate_counts_distinct_name_and_year(provider):
    provider.add(_order())
    provider.add(_order())
    provider.add(_order(payment_method_name="John Roe"))
    provider.add(_order(payment_method_data={"expYear": "2031", "expMonth": "3", "country": "US"}))

    stats = await provider.get_user_stats(1)

    assert stats.number_of_orders == 4
    assert stats.payment_method_rate == 0.75


async def test_deleted_and_non_card_orders_are_ignored(provider):
    provider.add(_order())
    provider.add(_order(deleted_at=NOW))
    provider.add(_order(payment_method_type="paypal"))

    stats = await provider.get_user_stats(1)

    assert stats.number_of_orders == 1


async def test_interval_restricts_to_trailing_window(provider):
    provider.add(_order(created_at=NOW - timedelta(hours=2)))
    provider.add(_order(created_at=NOW - timedelta(days=3)))
    provider.add(_order(created_at=NOW - timedelta(days=40)))

    assert (await provider.get_user_stats(1, "1 day")).number_of_orders == 1
    assert (await provider.get_user_stats(1, "1 week")).number_of_orders == 2
    assert (await provider.get_user_stats(1)).number_of_orders == 3


async def test_email_match_is_case_insensitive(provider):
    provider.add(_order(email="Jane@Example.com"))
    provider.add(_order(email="someone@else.com"))

    stats = await provider.get_email_stats("jane@EXAMPLE.com")

    assert stats.number_of_orders == 1


async def test_ip_supports_like_patterns(provider):
    provider.add(_order(req_ip="10.0.0.1"))
    provider.add(_order(req_ip="10.0.0.2"))
    provider.add(_order(req_ip="192.168.1.1"))

    assert (await provider.get_ip_stats("10.0.0.1")).number_of_orders == 1
    assert (await provider.get_ip_stats("10.0.0.%")).number_of_orders == 2


async def test_card_matches_identity_fields(provider):
    provider.add(_order())
    provider.add(_order(payment_method_data={"expYear": "2030", "expMonth": "4", "country": "US"}))
    provider.add(_order(payment_method_data={"expYear": "2030", "expMonth": "3", "country": "FR"}))
    card = CreditCardSubject(name="Jane Doe", exp_year=2030, exp_month=3, country="US")

    stats = await provider.get_credit_card_stats(card)

    assert stats.number_of_orders == 1


async def test_compute_stats_dispatches_on_subject(provider):
    provider.add(_order(created_by_user_id=7, email="x@y.z", req_ip="1.1.1.1"))

    assert (await provider.compute_stats(UserSubject(7))).number_of_orders == 1
    assert (await provider.compute_stats(EmailSubject("X@Y.Z"))).number_of_orders == 1
    assert (await provider.compute_stats(IpSubject("1.1.1.1"))).number_of_orders == 1
    card = CreditCardSubject(name="Jane Doe", exp_year=2030, exp_month=3, country="US")
    assert (await provider.compute_stats(card, "1 day")).number_of_orders == 1

    with pytest.raises(TypeError):
        await provider.compute_stats("not a subject")


def test_from_row_zero_fills_nulls():
    row = SimpleNamespace(error_rate=None, number_of_orders=0, payment_method_rate=None)

    assert FraudStats.from_row(row) == FraudStats()


def test_like_to_regex():
    assert like_to_regex("10.0.%").fullmatch("10.0.3.4")
    assert not like_to_regex("10.0.%").fullmatch("10.1.3.4")
    assert like_to_regex("a_c").fullmatch("abc")
    assert like_to_regex("A@B.com", ignore_case=True).fullmatch("a@b.COM")


def test_like_to_regex_backslash_escapes_wildcards():
    assert like_to_regex(r"10\_0").fullmatch("10_0")
    assert not like_to_regex(r"10\_0").fullmatch("10x0")
    assert like_to_regex(r"100\%").fullmatch("100%")
    assert not like_to_regex(r"100\%").fullmatch("1000")
    assert like_to_regex(r"a\\b").fullmatch("a\\b")


# --- sql shape ---

def _sql(query) -> str:
    return str(query.compile(dialect=postgresql.dialect()))


def test_user_query_filters():
    sql = _sql(build_user_stats_query(1))

    assert "orders.created_by_user_id = " in sql
    assert "orders.deleted_at IS NULL" in sql
    assert "payment_methods.type = " in sql
    assert "LEFT OUTER JOIN payment_methods" in sql
    assert "nullif(count(*)" in sql
    assert "now()" not in sql


def test_interval_adds_window_filter():
    sql = _sql(build_user_stats_query(1, "1 day"))

    assert "orders.created_at >= now() - " in sql


def test_email_query_is_case_insensitive_like():
    sql = _sql(build_email_stats_query("Jane@Example.com"))

    assert "LEFT OUTER JOIN users" in sql
    assert "lower(users.email) LIKE lower(" in sql


def test_ip_query_uses_request_ip():
    sql = _sql(build_ip_stats_query("10.0.0.%"))

    assert "orders.data ->> " in sql
    assert " LIKE " in sql


def test_card_query_matches_expiry_and_country():
    card = CreditCardSubject(name="Jane Doe", exp_year=2030, exp_month=3, country="US")
    query = build_credit_card_stats_query(card)
    params = query.compile(dialect=postgresql.dialect()).params

    assert "payment_methods.name = " in _sql(query)
    assert "2030" in params.values()
    assert "3" in params.values()
    assert "US" in params.values()
