"""
Annotation sink interface and text labels for resolved ages.
"""

import logging
from typing import Protocol, Callable

from age_verifier.models import AgeRecord


class AnnotationSink(Protocol):
    """Receives each completed resolution exactly once."""

    def on_resolved(self, handle: str, record: AgeRecord) -> None:
        ...


def format_account_age(days: int) -> str:
    if days < 365:
        return f"{days} days"
    return f"{days} days ({days / 365.25:.1f} years)"


def format_annotation(record: AgeRecord) -> str:
    """
    Short label, e.g. "Account: 400 days (1.1 years) | Posted: 18-21 | Possible: 25".
    """
    if record.is_unknown:
        label = "Account: unknown"
    else:
        label = f"Account: {format_account_age(record.resolved_age_days)}"

    if record.posted_ages:
        low, high = min(record.posted_ages), max(record.posted_ages)
        label += f" | Posted: {low}" if low == high else f" | Posted: {low}-{high}"

    if record.possible_ages:
        label += " | Possible: " + ", ".join(str(age) for age in record.possible_ages)

    estimate = record.age_estimate
    if estimate is not None and estimate.estimated_age is not None:
        label += f" | Est. {estimate.estimated_age:g} ({estimate.confidence})"

    return label


class LoggingSink:
    """Logs one line per resolved handle."""

    def on_resolved(self, handle: str, record: AgeRecord) -> None:
        logging.info(f"u/{handle:<22} {format_annotation(record)}  [{record.source.value}]")


class CallbackSink:
    """Adapts a plain function to the sink interface."""

    def __init__(self, callback: Callable[[str, AgeRecord], None]):
        self.callback = callback

    def on_resolved(self, handle: str, record: AgeRecord) -> None:
        self.callback(handle, record)
