"""Percentage helpers."""

from __future__ import annotations

import math


def percentage(total: float, amount: float) -> float:
    """Return ``amount`` as a percentage of ``total``.

    Raises ``ValueError`` when ``amount`` exceeds ``total``. A zero total
    yields NaN (or an infinity for a nonzero amount).
    """
    if amount > total:
        raise ValueError(f"total must be >= amount; total={total}, amount={amount}")
    if total == 0:
        if amount == 0:
            return math.nan
        return math.copysign(math.inf, amount)
    return (amount / total) * 100.0


def percent_of(amount, total):
    """Return ``amount`` as a percentage of ``total``.

    Integer arguments give an integer result, truncated toward zero; a
    percentage that cannot be represented (0 of 0) becomes 0.
    """
    result = percentage(float(total), float(amount))
    if isinstance(amount, float) or isinstance(total, float):
        return result
    if math.isnan(result) or math.isinf(result):
        return 0
    return int(result)