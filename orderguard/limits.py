# limit rules and threshold evaluation
# a rule is breached when ALL three stats reach its limits,
# a subject fails when ANY of its rules is breached

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from orderguard.errors import InvalidLimitRule
from orderguard.intervals import parse_interval
from orderguard.stats import FraudStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitRule:
    """
    one [interval, max_orders, max_error_rate, max_payment_method_rate] tuple

    interval is the trailing window the stats are computed over (None = all time)
    """
    interval: Optional[str]
    max_orders: float
    max_error_rate: float
    max_payment_method_rate: float

    @classmethod
    def from_params(cls, params) -> 'LimitRule':
        if not isinstance(params, (list, tuple)) or len(params) != 4:
            raise InvalidLimitRule(f"limit rule must be [interval, orders, errorRate, paymentMethodRate]: {params!r}")

        interval, *limits = params
        if interval is not None and not isinstance(interval, str):
            raise InvalidLimitRule(f"interval must be a string or null: {interval!r}")
        if interval:
            parse_interval(interval)  # fail at load time, not during screening

        for limit in limits:
            if isinstance(limit, bool) or not isinstance(limit, (int, float)):
                raise InvalidLimitRule(f"limits must be numbers: {params!r}")

        return cls(interval or None, *limits)

    @property
    def limits(self) -> tuple:
        return (self.max_orders, self.max_error_rate, self.max_payment_method_rate)

    def as_params(self) -> list:
        return [self.interval, *self.limits]

    def describe(self) -> str:
        return ','.join('' if param is None else str(param) for param in self.as_params())

    def is_violated_by(self, stats: FraudStats) -> bool:
        return all(limit <= value for limit, value in zip(self.limits, stats.as_vector()))


def parse_limit_rules(raw: Union[str, Sequence, None]) -> List[LimitRule]:
    """
    parse limit rules from configuration

    args:
        raw: json string like '[["1 day", 5, 0.3, 0.3]]' or an already decoded list

    returns:
        ordered list of LimitRule (empty when nothing is configured)
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidLimitRule(f"limit rules are not valid json: {e}") from e
    if not isinstance(raw, (list, tuple)):
        raise InvalidLimitRule(f"limit rules must be a list: {raw!r}")
    return [LimitRule.from_params(params) for params in raw]


@dataclass(frozen=True)
class Evaluation:
    """outcome of evaluating a subject - rule/stats are set only on failure"""
    rule: Optional[LimitRule] = None
    stats: Optional[FraudStats] = None

    @property
    def passed(self) -> bool:
        return self.rule is None

    @property
    def message(self) -> str:
        if self.passed:
            return 'PASS'
        stats = ','.join(str(value) for value in self.stats.as_vector())
        return f"Stat {stats} above threshold {self.rule.describe()}"


def evaluate_windows(windows: Sequence[Tuple[LimitRule, FraudStats]]) -> Evaluation:
    """evaluate rules in order, each against the stats of its own interval"""
    failure = None
    for rule, stats in windows:
        violated = rule.is_violated_by(stats)
        logger.debug(
            "Checking %s below threshold %s: %s",
            ','.join(str(value) for value in stats.as_vector()),
            rule.describe(),
            'FAIL' if violated else 'PASS',
        )
        if violated and failure is None:
            failure = Evaluation(rule=rule, stats=stats)
    return failure or Evaluation()


def evaluate(stats: FraudStats, limits: Sequence[LimitRule]) -> Evaluation:
    """evaluate a single set of stats against every rule"""
    return evaluate_windows([(rule, stats) for rule in limits])
