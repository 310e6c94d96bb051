"""Row building and rate-advantage statistics."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import math
from typing import Dict, Iterable, List, Optional

import pandas as pd

from .models import ComparisonRow, ListingCandidate, ReferencePriceResult
from .normalizer import parse_currency


@dataclass(frozen=True)
class Advantage:
    """How much cheaper the listing is than a reference rate."""

    amount: Optional[float] = None
    fraction: Optional[float] = None


@dataclass(frozen=True)
class RateComparison:
    best: Advantage
    major: Advantage


def compute_advantage(own_price: Optional[float], reference_price: Optional[float]) -> Advantage:
    """Return ``reference - own`` and its share of ``reference``.

    A missing operand gives a missing result, never zero.
    """

    if own_price is None or reference_price is None:
        return Advantage()
    amount = reference_price - own_price
    fraction = amount / reference_price if reference_price > 0 else None
    return Advantage(amount=amount, fraction=fraction)


def compare_rates(own_price: Optional[float], reference: ReferencePriceResult) -> RateComparison:
    return RateComparison(
        best=compute_advantage(own_price, reference.best_price),
        major=compute_advantage(own_price, reference.major_provider_price),
    )


def build_row(run_date: date, candidate: ListingCandidate, reference: ReferencePriceResult) -> ComparisonRow:
    """Join a listing with its reference prices into one output row."""

    own_price = parse_currency(candidate.price_raw)
    comparison = compare_rates(own_price, reference)
    return ComparisonRow(
        run_date=run_date,
        check_in=reference.check_in,
        check_out=reference.check_out,
        property_name=candidate.name,
        city=candidate.city,
        own_price=own_price,
        reference_best_price=reference.best_price,
        reference_major_price=reference.major_provider_price,
        advantage_amount=comparison.best.amount,
        advantage_fraction=comparison.best.fraction,
        own_url=candidate.url,
        reference_url=reference.source_url,
    )


def rows_to_dataframe(rows: Iterable[ComparisonRow]) -> pd.DataFrame:
    """Convert rows into a :class:`~pandas.DataFrame` with numeric price columns."""

    records: List[Dict[str, object]] = []
    for row in rows:
        record = row.to_dict()
        major = compute_advantage(row.own_price, row.reference_major_price)
        record["major_advantage_amount"] = major.amount
        record["major_advantage_fraction"] = major.fraction
        records.append(record)

    df = pd.DataFrame.from_records(records)
    if df.empty:
        return df
    numeric_columns = [
        "own_price",
        "reference_best_price",
        "reference_major_price",
        "advantage_amount",
        "advantage_fraction",
        "major_advantage_amount",
        "major_advantage_fraction",
    ]
    for column in numeric_columns:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    return df


def _mean(series: pd.Series) -> float:
    values = series.dropna()
    if values.empty:
        return 0.0
    value = float(values.mean())
    return 0.0 if math.isnan(value) else value


def summarise_rows(rows: Iterable[ComparisonRow]) -> Dict[str, float]:
    """Return simple statistics across all comparison rows."""

    df = rows_to_dataframe(rows)
    if df.empty:
        return {
            "count": 0,
            "with_reference": 0,
            "with_major": 0,
            "compared": 0,
            "own_cheaper": 0,
            "average_advantage": 0.0,
            "average_advantage_fraction": 0.0,
            "average_major_advantage": 0.0,
        }

    compared = df.dropna(subset=["advantage_amount"])
    return {
        "count": int(len(df)),
        "with_reference": int(df["reference_best_price"].notna().sum()),
        "with_major": int(df["reference_major_price"].notna().sum()),
        "compared": int(len(compared)),
        "own_cheaper": int((compared["advantage_amount"] > 0).sum()),
        "average_advantage": _mean(df["advantage_amount"]),
        "average_advantage_fraction": _mean(df["advantage_fraction"]),
        "average_major_advantage": _mean(df["major_advantage_amount"]),
    }


def top_rows(rows: Iterable[ComparisonRow], limit: int = 5) -> List[ComparisonRow]:
    """Rows with the largest listing advantage first; rows without one are skipped."""

    ranked = [row for row in rows if row.advantage_amount is not None]
    ranked.sort(key=lambda row: row.advantage_amount or 0.0, reverse=True)
    return ranked[:limit]
