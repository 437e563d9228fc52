# fraud gate - screens orders against historical stats before they go through
# every applicable check runs to completion so each violator gets suspended,
# enforcement decides whether a violation blocks the order or is only logged

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from orderguard.config import FraudConfig
from orderguard.errors import FraudRejected, ValidationFailed
from orderguard.limits import Evaluation, LimitRule, evaluate_windows
from orderguard.stats import StatisticsProvider
from orderguard.subjects import CreditCardSubject, EmailSubject, IpSubject, UserSubject
from orderguard.suspension import SuspendedAssetStore

logger = logging.getLogger(__name__)

OnFail = Callable[[ValidationFailed], Awaitable[Any]]
PreCheck = Callable[[], Awaitable[Any]]


@dataclass
class RequestContext:
    """who is placing the order and from where"""
    remote_user: Optional[Any] = None  # anything with an .id
    ip: Optional[str] = None


@dataclass
class ScreeningResult:
    """outcome of screen_order when nothing was raised"""
    checks: Dict[str, Evaluation] = field(default_factory=dict)

    @property
    def flagged(self) -> List[str]:
        return [name for name, evaluation in self.checks.items() if not evaluation.passed]


class FraudGate:
    """
    runs per-subject fraud checks for incoming orders

    args:
        stats_provider: computes FraudStats per subject and interval
        asset_store: suspended asset bookkeeping
        config: enforcement flag and limit rules per subject kind
    """

    def __init__(self, stats_provider: StatisticsProvider, asset_store: SuspendedAssetStore, config: FraudConfig):
        self.stats_provider = stats_provider
        self.asset_store = asset_store
        self.config = config

    @property
    def enforced(self) -> bool:
        return self.config.enforce_suspended_asset

    async def validate_stat(
        self,
        subject,
        limits: Sequence[LimitRule],
        error_message: str,
        on_fail: Optional[OnFail] = None,
        pre_check: Optional[PreCheck] = None,
    ) -> Evaluation:
        """
        check one subject against its limit rules

        with enforcement on, an already suspended asset is rejected before any stats are computed.
        a violation is logged and handed to on_fail (default: suspend the asset),
        and only raised when enforcement is on.
        """
        if self.enforced:
            if pre_check is not None:
                await pre_check()
            else:
                await self.asset_store.assert_not_suspended(subject.asset_type, subject.fingerprint)

        # one stats query per rule window, concurrently
        stats = await asyncio.gather(
            *(self.stats_provider.compute_stats(subject, rule.interval) for rule in limits)
        )
        evaluation = evaluate_windows(list(zip(limits, stats)))
        if evaluation.passed:
            return evaluation

        error = ValidationFailed(
            f"{error_message}: {evaluation.message}",
            {
                'args': {'asset_type': subject.asset_type.value, 'fingerprint': subject.fingerprint},
                'limit_params': [rule.as_params() for rule in limits],
                'breached': evaluation.rule.as_params(),
                'stats': list(evaluation.stats.as_vector()),
            },
        )
        logger.warning(error.message)

        try:
            if on_fail is not None:
                await on_fail(error)
            else:
                await self.asset_store.create(subject.asset_type, subject.fingerprint, reason=error.message)
        except Exception:
            logger.exception("failed to record fraud failure for %s", subject.describe())

        if self.enforced:
            raise error
        return evaluation

    async def _check(self, subject, on_fail=None) -> Evaluation:
        return await self.validate_stat(
            subject,
            self.config.limits_for(subject.asset_type),
            f"Fraud: {subject.describe()} failed fraud protection",
            on_fail=on_fail,
        )

    async def check_user(self, user, on_fail: Optional[OnFail] = None) -> Evaluation:
        return await self._check(UserSubject(user.id), on_fail)

    async def check_credit_card(self, payment_method, on_fail: Optional[OnFail] = None) -> Evaluation:
        return await self._check(CreditCardSubject.from_payment_method(payment_method), on_fail)

    async def check_ip(self, ip: str, on_fail: Optional[OnFail] = None) -> Evaluation:
        return await self._check(IpSubject(ip), on_fail)

    async def check_email(self, email: str, on_fail: Optional[OnFail] = None) -> Evaluation:
        return await self._check(EmailSubject(email), on_fail)

    def _build_checks(self, request: RequestContext, order) -> Dict[str, Awaitable[Evaluation]]:
        checks = {}
        if request.ip:
            checks['ip'] = self.check_ip(request.ip)

        payment_method = getattr(order, 'payment_method', None)
        if getattr(payment_method, 'credit_card_info', None) is not None:
            checks['credit_card'] = self.check_credit_card(payment_method)

        guest_info = getattr(order, 'guest_info', None)
        if request.remote_user is not None:
            checks['user'] = self.check_user(request.remote_user)
        elif guest_info is not None and guest_info.email:
            checks['email'] = self.check_email(guest_info.email)
        return checks

    async def screen_order(self, request: RequestContext, order) -> ScreeningResult:
        """
        screen an order: ip, card, and user (or guest email) checks

        all checks run to completion. the first failure to complete is raised,
        a FraudRejected gets the names of all checks and every failure added to its context.
        """
        checks = self._build_checks(request, order)
        completed = []

        async def run(name, check):
            try:
                return await check
            finally:
                completed.append(name)

        outcomes = await asyncio.gather(
            *(run(name, check) for name, check in checks.items()),
            return_exceptions=True,
        )
        results = dict(zip(checks, outcomes))

        failures = {name: outcome for name, outcome in results.items() if isinstance(outcome, BaseException)}
        if failures:
            first = failures[next(name for name in completed if name in failures)]
            if isinstance(first, FraudRejected):
                first.context['checks'] = list(checks)
                first.context['failures'] = {name: str(error) for name, error in failures.items()}
            raise first

        return ScreeningResult(checks=results)
