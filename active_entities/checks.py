"""Column data tests run against the target table after a merge.

Supported tests, configured per column::

    columns:
      customer_id: [not_null, unique]
      signup_date:
        - not_null
        - accepted_range: {max_value: today}

``accepted_range`` takes ``min_value`` and/or ``max_value``; the literal
``today`` resolves to the run date.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import ConfigError
from .timestamps import as_date, parse_instant

SAMPLE_SIZE = 5


@dataclass
class CheckResult:
    column: str
    test: str
    failures: int = 0
    sample: List[Any] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.failures == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "column": self.column,
            "test": self.test,
            "passed": self.passed,
            "failures": self.failures,
            "sample": [str(value) for value in self.sample],
        }


def run_checks(
    rows: Iterable[Mapping[str, Any]],
    columns: Mapping[str, List[Any]],
    now: Optional[datetime] = None,
) -> List[CheckResult]:
    """Run the configured column tests over ``rows``."""

    rows = list(rows)
    today = as_date(now) if now is not None else date.today()
    results = []
    for column, tests in columns.items():
        for test in tests or []:
            name, options = _parse_test(column, test)
            values = [row.get(column) for row in rows]
            if name == "not_null":
                failing = [v for v in values if v is None or v == ""]
            elif name == "unique":
                counts = Counter(v for v in values if v is not None)
                failing = [v for v, n in counts.items() if n > 1]
            else:
                failing = _out_of_range(values, options, today)
            results.append(
                CheckResult(
                    column=column,
                    test=name,
                    failures=len(failing),
                    sample=failing[:SAMPLE_SIZE],
                )
            )
    return results


def _parse_test(column: str, test: Any):
    if isinstance(test, str):
        name, options = test, {}
    elif isinstance(test, Mapping) and len(test) == 1:
        name, options = next(iter(test.items()))
        options = dict(options or {})
    else:
        raise ConfigError(f"Invalid test definition for column {column!r}: {test!r}")

    if name not in ("not_null", "unique", "accepted_range"):
        raise ConfigError(f"Unknown test {name!r} for column {column!r}")
    if name == "accepted_range" and not ({"min_value", "max_value"} & set(options)):
        raise ConfigError(
            f"accepted_range on {column!r} needs min_value or max_value"
        )
    return name, options


def _out_of_range(values: List[Any], options: Mapping[str, Any], today: date) -> List[Any]:
    low = _resolve_bound(options.get("min_value"), today)
    high = _resolve_bound(options.get("max_value"), today)
    failing = []
    for value in values:
        if value is None:
            continue
        reference = low if low is not None else high
        try:
            comparable = _coerce(value, reference)
            out = (low is not None and comparable < low) or (
                high is not None and comparable > high
            )
        except (TypeError, ValueError):
            out = True
        if out:
            failing.append(value)
    return failing


def _resolve_bound(bound: Any, today: date) -> Any:
    if isinstance(bound, str) and bound.lower() in ("today", "getdate()", "current_date"):
        return today
    if isinstance(bound, str):
        try:
            return parse_instant(bound, "date")
        except ValueError:
            return bound
    return bound


def _coerce(value: Any, reference: Any) -> Any:
    if isinstance(reference, date) and not isinstance(value, date):
        return parse_instant(value, "date")
    if isinstance(reference, date) and isinstance(value, datetime):
        return value.date()
    return value
