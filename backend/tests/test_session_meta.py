"""
Tests for typed session metadata, including rows written before `kind` existed.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import BRIEF_RESPONSE
from postcraft.services.brief_builder import Brief
from postcraft.services.session_meta import (
    AnalyzedMeta,
    EnrichedMeta,
    EnrichmentFailedMeta,
    FailedMeta,
    PendingMeta,
    brief_of,
    dump_meta,
    error_of,
    failed_from,
    parse_meta,
)


@pytest.mark.parametrize("data,expected", [
    (None, PendingMeta),
    ({}, PendingMeta),
    ({"brief": BRIEF_RESPONSE}, AnalyzedMeta),
    ({"brief": BRIEF_RESPONSE, "enrichment_complete": True}, EnrichedMeta),
    ({"analysis_error": "AI down"}, EnrichmentFailedMeta),
    ({"error": "boom", "stage": "analysis"}, FailedMeta),
])
def test_legacy_rows_are_classified(data, expected):
    assert isinstance(parse_meta(data), expected)


def test_explicit_kind_wins():
    meta = parse_meta({"kind": "pending", "brief": BRIEF_RESPONSE})
    assert isinstance(meta, PendingMeta)


def test_unknown_kind_rejected():
    with pytest.raises(PydanticValidationError):
        parse_meta({"kind": "archived"})


def test_dump_round_trip():
    meta = AnalyzedMeta(brief=Brief.model_validate(BRIEF_RESPONSE), generation_errors={"twitter": "timeout"})
    again = parse_meta(dump_meta(meta))

    assert isinstance(again, AnalyzedMeta)
    assert again.brief.topic_overview.title == "AI Triage in Rural Clinics"
    assert again.generation_errors == {"twitter": "timeout"}
    assert dump_meta(meta)["brief"]["topicOverview"]["title"] == "AI Triage in Rural Clinics"


def test_failed_from_keeps_brief_and_errors():
    previous = AnalyzedMeta(
        brief=Brief.model_validate(BRIEF_RESPONSE),
        raw_analysis={"topic": "AI triage"},
        generation_errors={"blog": "parse"},
    )

    failed = failed_from(previous, "all platforms failed", "generation")

    assert failed.stage == "generation"
    assert brief_of(failed) is previous.brief
    assert failed.raw_analysis == {"topic": "AI triage"}
    assert failed.generation_errors == {"blog": "parse"}
    assert error_of(failed) == "all platforms failed"


def test_failed_from_pending():
    failed = failed_from(PendingMeta(), "research exploded", "analysis")
    assert failed.brief is None
    assert failed.generation_errors == {}


def test_error_of():
    assert error_of(PendingMeta()) is None
    assert error_of(EnrichmentFailedMeta(analysis_error="quota")) == "quota"
