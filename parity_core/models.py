"""Shared data structures used across discovery, pricing and delivery."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union


@dataclass(frozen=True)
class DateWindow:
    """Check-in / check-out pair shared by every lookup in a run."""

    check_in: date
    check_out: date

    def __post_init__(self) -> None:
        if self.check_out <= self.check_in:
            raise ValueError(
                f"check_out ({self.check_out}) must be after check_in ({self.check_in})"
            )

    @classmethod
    def from_offset(cls, today: date, offset_days: int, nights: int) -> "DateWindow":
        check_in = today + timedelta(days=offset_days)
        return cls(check_in=check_in, check_out=check_in + timedelta(days=nights))

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def to_dict(self) -> Dict[str, str]:
        return {"check_in": self.check_in.isoformat(), "check_out": self.check_out.isoformat()}


@dataclass
class ListingCandidate:
    """A property card discovered on the listing site."""

    name: str
    city: str
    price_raw: Optional[str] = None
    url: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.name.lower()}|{self.city.lower()}"


@dataclass(frozen=True)
class ReferencePriceResult:
    """Reference rates found for one property and date window.

    Prices are ``None`` whenever the lookup could not be trusted, never a
    best guess.
    """

    check_in: date
    check_out: date
    source_url: Optional[str]
    best_price: Optional[float] = None
    major_provider_price: Optional[float] = None
    strategy: Optional[str] = None

    @classmethod
    def empty(cls, window: DateWindow, source_url: Optional[str] = None) -> "ReferencePriceResult":
        return cls(check_in=window.check_in, check_out=window.check_out, source_url=source_url)


Cell = Union[str, float, int]


@dataclass(frozen=True)
class ComparisonRow:
    """One output row; field order is the spreadsheet column order."""

    run_date: date
    check_in: date
    check_out: date
    property_name: str
    city: str
    own_price: Optional[float]
    reference_best_price: Optional[float]
    reference_major_price: Optional[float]
    advantage_amount: Optional[float]
    advantage_fraction: Optional[float]
    own_url: Optional[str]
    reference_url: Optional[str]

    COLUMNS = (
        "Date",
        "Check-in",
        "Check-out",
        "Property",
        "City",
        "Own Price",
        "Reference Best",
        "Reference Major",
        "Advantage $",
        "Advantage %",
        "Listing URL",
        "Reference URL",
    )

    def to_values(self) -> List[Cell]:
        """Return the wire representation expected by the spreadsheet webhook."""

        values: List[Cell] = [
            self.run_date.isoformat(),
            self.check_in.isoformat(),
            self.check_out.isoformat(),
            self.property_name,
            self.city,
        ]
        for number in (
            self.own_price,
            self.reference_best_price,
            self.reference_major_price,
            self.advantage_amount,
            self.advantage_fraction,
        ):
            values.append("" if number is None else number)
        values.append(self.own_url or "")
        values.append(self.reference_url or "")
        return values

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
            "property_name": self.property_name,
            "city": self.city,
            "own_price": self.own_price,
            "reference_best_price": self.reference_best_price,
            "reference_major_price": self.reference_major_price,
            "advantage_amount": self.advantage_amount,
            "advantage_fraction": self.advantage_fraction,
            "own_url": self.own_url,
            "reference_url": self.reference_url,
        }


DELIVERED = "delivered"
ABANDONED = "abandoned"
PENDING = "pending"


@dataclass
class DeliveryBatch:
    """A slice of rows together with its delivery bookkeeping."""

    index: int
    rows: Sequence[ComparisonRow]
    attempts: int = 0
    outcome: str = PENDING
    last_status: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "rows": len(self.rows),
            "attempts": self.attempts,
            "outcome": self.outcome,
            "last_status": self.last_status,
            "last_error": self.last_error,
        }


@dataclass
class DeliveryReport:
    """Outcome of pushing every batch of a run to the webhook."""

    batches: List[DeliveryBatch] = field(default_factory=list)

    @property
    def delivered_rows(self) -> int:
        return sum(len(batch.rows) for batch in self.batches if batch.outcome == DELIVERED)

    @property
    def abandoned_batches(self) -> List[DeliveryBatch]:
        return [batch for batch in self.batches if batch.outcome == ABANDONED]

    @property
    def complete(self) -> bool:
        return all(batch.outcome == DELIVERED for batch in self.batches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batches": [batch.to_dict() for batch in self.batches],
            "delivered_rows": self.delivered_rows,
            "abandoned_batches": len(self.abandoned_batches),
            "complete": self.complete,
        }
