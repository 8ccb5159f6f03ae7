"""
Tests for src/schemas/ingestion.py - webhook body and form field parsing.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.schemas.ingestion import (
    IngestionOrigin,
    IngestionPayload,
    IngestOutcome,
    IngestResult,
    LeadDetail,
    LeadField,
    SyncReport,
    parse_lead_fields,
    parse_leadgen_change,
    parse_platform_time,
    parse_webhook_body,
)


def _change(**value):
    return {"field": "leadgen", "value": value}


def _body(*changes, obj="page"):
    return {"object": obj, "entry": [{"id": "PAGE1", "time": 1700000000, "changes": list(changes)}]}


class TestParseWebhookBody:
    def test_extracts_every_leadgen_change(self):
        body = _body(
            _change(leadgen_id="L1", form_id="F1", page_id="PAGE1", adgroup_id="AS1",
                    ad_id="AD1", campaign_id="C1", created_time=1700000000),
            _change(leadgen_id="L2"),
        )
        payloads, unusable = parse_webhook_body(body)

        assert unusable == 0
        assert [p.external_lead_id for p in payloads] == ["L1", "L2"]
        first = payloads[0]
        assert first.adset_id == "AS1"
        assert first.form_id == "F1"
        assert first.created_time == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert first.origin == IngestionOrigin.WEBHOOK
        assert first.field_data == []

    def test_ignores_other_fields_and_objects(self):
        body = _body({"field": "feed", "value": {"item": "post"}})
        assert parse_webhook_body(body) == ([], 0)
        assert parse_webhook_body(_body(_change(leadgen_id="L1"), obj="user")) == ([], 0)

    def test_leadgen_change_without_id_is_counted_unusable(self):
        payloads, unusable = parse_webhook_body(_body(_change(form_id="F1"), _change(leadgen_id="L9")))
        assert [p.external_lead_id for p in payloads] == ["L9"]
        assert unusable == 1

    @pytest.mark.parametrize("body", [None, [], "text", {"object": "page", "entry": "oops"}])
    def test_malformed_bodies_yield_nothing(self, body):
        assert parse_webhook_body(body) == ([], 0)

    def test_numeric_leadgen_id_is_coerced_to_string(self):
        payload = parse_leadgen_change(_change(leadgen_id=123456789))
        assert payload.external_lead_id == "123456789"


class TestIngestionPayload:
    def test_blank_external_id_fails_closed(self):
        with pytest.raises(ValidationError):
            IngestionPayload(external_lead_id="  ")

    def test_with_detail_keeps_webhook_ids(self):
        payload = IngestionPayload(external_lead_id="L1", campaign_id="C-webhook")
        detail = LeadDetail(
            id="L1", campaign_id="C-detail", ad_id="AD1",
            field_data=[{"name": "full_name", "values": ["Asha K"]}],
        )
        merged = payload.with_detail(detail)

        assert merged.campaign_id == "C-webhook"
        assert merged.ad_id == "AD1"
        assert merged.field_data[0].first_value == "Asha K"

    def test_from_detail_marks_backup_origin(self):
        detail = LeadDetail(id="L5", created_time="2026-10-19T10:00:00+0000")
        payload = IngestionPayload.from_detail(detail, page_id="PAGE1")
        assert payload.origin == IngestionOrigin.BACKUP_SYNC
        assert payload.page_id == "PAGE1"
        assert payload.created_time == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


class TestParsePlatformTime:
    def test_epoch_and_iso(self):
        assert parse_platform_time(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert parse_platform_time("2026-10-19T10:00:00Z") == datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)

    def test_garbage_is_none(self):
        assert parse_platform_time("yesterday") is None
        assert parse_platform_time(None) is None


class TestParseLeadFields:
    def test_standard_form(self):
        fields = parse_lead_fields([
            LeadField(name="full_name", values=["Asha K"]),
            LeadField(name="phone_number", values=["+91 98765 43210"]),
            LeadField(name="email", values=["Asha@Example.com"]),
            LeadField(name="message", values=["Need a 2BHK"]),
            LeadField(name="city", values=["Pune"]),
        ])

        assert fields.name == "Asha K"
        assert fields.phone == "+91 98765 43210"
        assert fields.email == "asha@example.com"
        assert fields.custom_fields == {"message": "Need a 2BHK", "city": "Pune"}
        assert fields.requirement == "Need a 2BHK"

    def test_first_and_last_name_fallback(self):
        fields = parse_lead_fields([
            LeadField(name="first_name", values=["Asha"]),
            LeadField(name="last_name", values=["K"]),
        ])
        assert fields.name == "Asha K"

    def test_empty_values_are_ignored(self):
        fields = parse_lead_fields([
            LeadField(name="phone_number", values=["", "  "]),
            LeadField(name="comments", values=[]),
        ])
        assert fields.phone is None
        assert fields.custom_fields == {}
        assert fields.requirement is None


class TestSyncReport:
    def test_record_counts_each_outcome(self):
        report = SyncReport()
        for outcome in IngestOutcome:
            report.record(IngestResult(outcome=outcome))
        assert (report.created, report.skipped, report.rejected, report.errors) == (1, 1, 1, 1)
