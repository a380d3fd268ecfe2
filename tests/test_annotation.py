"""Tests for annotation labels and sinks."""

import logging

from age_verifier.annotation import (
    CallbackSink,
    LoggingSink,
    format_account_age,
    format_annotation,
)
from age_verifier.models import AgeEstimate, AgeRecord, FailureKind
from tests.fakes import NOW, DAY


def test_format_account_age():
    assert format_account_age(0) == "0 days"
    assert format_account_age(364) == "364 days"
    assert format_account_age(400) == "400 days (1.1 years)"


def test_format_unknown():
    record = AgeRecord.unknown('bob', NOW, FailureKind.PERMANENT)
    assert format_annotation(record) == "Account: unknown"


def test_format_with_posted_ages_and_estimate():
    record = AgeRecord(
        handle='alice',
        resolved_age_days=400,
        resolved_at=NOW,
        posted_ages=(22, 24),
        age_estimate=AgeEstimate(estimated_age=25.5, confidence='High', data_points=4),
    )
    assert format_annotation(record) == (
        "Account: 400 days (1.1 years) | Posted: 22-24 | Est. 25.5 (High)"
    )


def test_format_single_posted_age_and_skipped_estimate():
    record = AgeRecord(
        handle='alice',
        resolved_age_days=30,
        resolved_at=NOW,
        posted_ages=(24,),
        age_estimate=AgeEstimate(skipped_reason='major_jump'),
    )
    assert format_annotation(record) == "Account: 30 days | Posted: 24"


def test_logging_sink(caplog):
    caplog.set_level(logging.INFO)
    LoggingSink().on_resolved('alice', AgeRecord.from_creation('alice', NOW - 10 * DAY, NOW))
    assert 'u/alice' in caplog.text
    assert 'Account: 10 days' in caplog.text


def test_callback_sink():
    seen = []
    record = AgeRecord.from_creation('alice', NOW - DAY, NOW)
    CallbackSink(lambda handle, rec: seen.append((handle, rec))).on_resolved('alice', record)
    assert seen == [('alice', record)]


def test_format_possible_ages():
    record = AgeRecord(
        handle='alice',
        resolved_age_days=30,
        resolved_at=NOW,
        posted_ages=(24,),
        possible_ages=(19, 25),
    )
    assert format_annotation(record) == "Account: 30 days | Posted: 24 | Possible: 19, 25"


def test_possible_ages_survive_persistence():
    record = AgeRecord(handle='alice', resolved_age_days=30, resolved_at=NOW, possible_ages=(19, 25))
    assert AgeRecord.from_dict(record.to_dict()).possible_ages == (19, 25)
