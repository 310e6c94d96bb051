"""Reporting helpers for the rate-parity run."""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Optional

from .models import ComparisonRow, DeliveryReport
from .processor import top_rows

if TYPE_CHECKING:  # pragma: no cover
    from .workflow import ParityResult

PLACEHOLDER = "–"


def _money(value: Optional[float]) -> str:
    return PLACEHOLDER if value is None else f"${value:,.0f}"


def _percent(value: Optional[float]) -> str:
    return PLACEHOLDER if value is None else f"{value * 100:.1f}%"


def generate_row_table(rows: Iterable[ComparisonRow]) -> str:
    """Return a markdown-style table of comparison rows."""

    headers = ["Property", "City", "Own", "Reference", "Major", "Advantage", "Advantage %"]
    lines: List[str] = [
        "| " + " | ".join(headers) + " |",
        "| " + " | ".join(["---"] * len(headers)) + " |",
    ]
    row_list = list(rows)
    if not row_list:
        lines.append("| No comparable rows |" + " |" * (len(headers) - 1))
        return "\n".join(lines)

    for row in row_list:
        columns = [
            row.property_name,
            row.city or PLACEHOLDER,
            _money(row.own_price),
            _money(row.reference_best_price),
            _money(row.reference_major_price),
            _money(row.advantage_amount),
            _percent(row.advantage_fraction),
        ]
        lines.append("| " + " | ".join(columns) + " |")
    return "\n".join(lines)


def _delivery_lines(delivery: Optional[DeliveryReport], dry_run: bool) -> List[str]:
    if dry_run:
        return ["- Dry run: rows were not sent to the webhook"]
    if delivery is None:
        return ["- Delivery was not attempted"]
    lines = [
        f"- {delivery.delivered_rows} rows delivered in "
        f"{len(delivery.batches) - len(delivery.abandoned_batches)}/{len(delivery.batches)} batches"
    ]
    for batch in delivery.abandoned_batches:
        lines.append(
            f"- Batch {batch.index} abandoned after {batch.attempts} attempts "
            f"(last status {batch.last_status or PLACEHOLDER})"
        )
    return lines


def build_report(result: "ParityResult") -> str:
    """Create a text report summarising one run."""

    summary = result.summary
    window = result.window
    lines: List[str] = [
        "Rate Parity Report",
        "==================",
        "",
        f"Run date: {result.run_date.isoformat()}",
        f"Stay: {window.check_in.isoformat()} – {window.check_out.isoformat()} ({window.nights} nights)",
        f"Properties discovered: {len(result.candidates)}",
        "",
        "Summary:",
        f"- {summary['count']} rows built",
        f"- {summary['with_reference']} with a reference price, {summary['with_major']} with a major-provider price",
    ]
    if summary["compared"]:
        lines.append(f"- Listing cheaper in {summary['own_cheaper']} of {summary['compared']} comparisons")
        lines.append(f"- Average advantage: {_money(summary['average_advantage'])}")
        lines.append(f"- Average advantage share: {_percent(summary['average_advantage_fraction'])}")
    else:
        lines.append("- No rows could be compared")

    lines.append("")
    lines.append("Delivery:")
    lines.extend(_delivery_lines(result.delivery, result.config.dry_run))

    lines.append("")
    lines.append("Largest advantages:")
    lines.append(generate_row_table(top_rows(result.rows)))
    return "\n".join(lines)
