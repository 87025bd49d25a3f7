"""Group kept transactions by merchant, direction and amount band.

Banding
-------
Magnitudes are split into decades ``(d, 10d]`` with ``d`` a power of ten.
Inside a decade, bands are ``w = band_ratio * d`` wide::

    (d + (k-1)*w, d + k*w]      k = ceil((m - d) / w)

With the default ratio of 0.5 that gives ``(10, 15]``, ``(15, 20]``, ...,
``(100, 150]``, ``(150, 200]`` and so on: coarser bands for larger amounts.
Magnitudes up to 1 share ``[0, 1]``. Upper bounds are inclusive, so an amount
sitting exactly on a boundary always lands in the lower band.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_CEILING, Decimal

from .errors import ConfigurationError
from .logging_setup import get_logger
from .models import AmountBand, NormalizedTransaction, TransactionGroup

logger = get_logger("spend_insights.grouping")

_ONE = Decimal("1")
DEFAULT_BAND_RATIO = Decimal("0.5")


def _decade_base(magnitude: Decimal) -> Decimal:
    """Largest power of ten strictly below ``magnitude`` (``magnitude > 1``)."""

    exp = magnitude.adjusted()
    base = Decimal(1).scaleb(exp)
    if base == magnitude:
        base = Decimal(1).scaleb(exp - 1)
    return base


def amount_band(amount: Decimal, band_ratio: Decimal = DEFAULT_BAND_RATIO) -> AmountBand:
    if not Decimal("0") < band_ratio <= _ONE:
        raise ConfigurationError("band_ratio must be within (0, 1]")
    direction = -1 if amount < 0 else 1
    magnitude = abs(amount)
    if magnitude <= _ONE:
        return AmountBand(Decimal("0"), _ONE, direction)

    base = _decade_base(magnitude)
    width = band_ratio * base
    k = ((magnitude - base) / width).to_integral_value(rounding=ROUND_CEILING)
    low = base + (k - 1) * width
    high = min(base + k * width, base * 10)
    return AmountBand(low.normalize(), high.normalize(), direction)


def group(
    txns: Sequence[NormalizedTransaction], *, band_ratio: Decimal = DEFAULT_BAND_RATIO
) -> list[TransactionGroup]:
    """Partition ``txns`` into groups in order of first appearance.

    Every transaction ends up in exactly one group; members keep input order.
    """

    buckets: dict[tuple[str, int, Decimal, Decimal], list[NormalizedTransaction]] = {}
    bands: dict[tuple[str, int, Decimal, Decimal], AmountBand] = {}
    display: dict[tuple[str, int, Decimal, Decimal], str] = {}
    for t in txns:
        band = amount_band(t.amount, band_ratio)
        key = (t.merchant_key, band.direction, band.low, band.high)
        if key not in buckets:
            buckets[key] = []
            bands[key] = band
            display[key] = t.merchant
        buckets[key].append(t)

    groups = [
        TransactionGroup(
            group_id=f"g{i}",
            representative_merchant=display[key],
            amount_band=bands[key],
            members=tuple(members),
        )
        for i, (key, members) in enumerate(buckets.items(), start=1)
    ]
    logger.info("group:done transactions=%d groups=%d", len(txns), len(groups))
    return groups


__all__ = ["DEFAULT_BAND_RATIO", "amount_band", "group"]
