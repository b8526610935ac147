"""
Tests for the evaluation oracle adapter.
"""
import json
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from procureflow.core.config import settings
from procureflow.core.errors import EvaluationFailure
from procureflow.services import evaluation_oracle
from procureflow.services.evaluation_oracle import OracleTransportError

VALID = {
    "cost_score": 80,
    "delivery_score": 70,
    "compliance_score": 90,
    "overall_score": 80,
    "confidence": 75,
    "insights": {
        "cost_analysis": "Below budget",
        "delivery_prediction": "On time",
        "compliance_notes": "All documents present",
        "risk_factors": [],
        "recommendation": "Proceed",
    },
}

PROPOSAL = {
    "id": "p1",
    "vendor_name": "Supply Co",
    "proposed_item": "Chair",
    "quantity": 10,
    "unit_price": 100.0,
    "total_price": 1000.0,
    "currency": "USD",
    "delivery_time": "1 week",
    "delivery_date": (date.today() + timedelta(days=7)).isoformat(),
}

MARKET_REQUEST = {"id": "mr1", "title": "Chairs", "max_budget": 2000.0, "currency": "USD", "quantity": 10}


@pytest.fixture
def openai_provider(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER", "openai")
    monkeypatch.setattr(settings, "ORACLE_MAX_ATTEMPTS", 3)
    monkeypatch.setattr(settings, "ORACLE_RETRY_BACKOFF_SECONDS", 0)


class TestParsing:
    """Fail-closed parsing of provider replies."""

    def test_valid_reply_wrapped_in_prose(self):
        raw = "Here is my evaluation:\n" + json.dumps(VALID) + "\nThanks."
        result = evaluation_oracle.parse_evaluation(raw, "test-model")
        assert result["overall_score"] == 80
        assert result["insights"]["recommendation"] == "Proceed"
        assert result["model_version"] == "test-model"
        assert result["evaluated_at"]

    def test_camel_case_keys_accepted(self):
        raw = json.dumps({
            "costScore": 80, "deliveryScore": 70, "complianceScore": 90,
            "overallScore": 80, "confidence": 75,
            "insights": {"riskFactors": ["Late"], "recommendation": "Maybe"},
        })
        result = evaluation_oracle.parse_evaluation(raw, "m")
        assert result["cost_score"] == 80
        assert result["insights"]["risk_factors"] == ["Late"]

    @pytest.mark.parametrize("raw", [None, "", "no json here at all"])
    def test_missing_json_fails(self, raw):
        with pytest.raises(EvaluationFailure):
            evaluation_oracle.parse_evaluation(raw, "m")

    def test_malformed_json_fails(self):
        with pytest.raises(EvaluationFailure):
            evaluation_oracle.parse_evaluation('{"cost_score": 80,,}', "m")

    def test_out_of_range_score_fails(self):
        with pytest.raises(EvaluationFailure) as exc_info:
            evaluation_oracle.parse_evaluation(json.dumps(dict(VALID, overall_score=140)), "m")
        assert "overall_score" in exc_info.value.details["fields"]

    def test_missing_score_fails(self):
        payload = dict(VALID)
        del payload["delivery_score"]
        with pytest.raises(EvaluationFailure):
            evaluation_oracle.parse_evaluation(json.dumps(payload), "m")


class TestMockProvider:
    """Deterministic heuristic scorer."""

    def test_mock_is_deterministic_and_in_range(self):
        first = evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        second = evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        for key in ("cost_score", "delivery_score", "compliance_score", "overall_score", "confidence"):
            assert first[key] == second[key]
            assert 0 <= first[key] <= 100
        assert first["model_version"] == evaluation_oracle.MOCK_MODEL_VERSION

    def test_over_budget_flagged(self):
        result = evaluation_oracle.evaluate(dict(PROPOSAL, total_price=5000.0), MARKET_REQUEST)
        assert "Price exceeds the stated budget" in result["insights"]["risk_factors"]

    def test_cheaper_scores_higher_on_cost(self):
        cheap = evaluation_oracle.evaluate(dict(PROPOSAL, total_price=500.0), MARKET_REQUEST)
        pricey = evaluation_oracle.evaluate(dict(PROPOSAL, total_price=1900.0), MARKET_REQUEST)
        assert cheap["cost_score"] > pricey["cost_score"]

    def test_unknown_provider_fails(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "carrier-pigeon")
        with pytest.raises(EvaluationFailure):
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)


class TestVendorAndMarketAnalysis:
    """Vendor insights and market request analysis."""

    def test_vendor_without_track_record(self):
        result = evaluation_oracle.analyze_vendor({"id": "v1", "name": "Supply Co", "rating": 0}, [])
        assert result["risk_level"] == "medium"
        assert result["performance_score"] == 50.0
        assert result["model_version"] == evaluation_oracle.MOCK_MODEL_VERSION

    def test_winning_vendor_is_low_risk(self):
        history = [{"status": "accepted"}, {"status": "accepted"}, {"status": "rejected"}]
        result = evaluation_oracle.analyze_vendor({"id": "v1", "rating": 4.5}, history)
        assert result["risk_level"] == "low"
        assert result["performance_score"] > 50
        assert result["predictions"]["price_competitiveness"] == "competitive"

    def test_losing_vendor_is_high_risk(self):
        history = [{"status": "rejected"}] * 5
        result = evaluation_oracle.analyze_vendor({"id": "v1"}, history)
        assert result["risk_level"] == "high"
        assert any("guarantee" in r for r in result["recommendations"])

    def test_market_analysis_criteria_sum_to_100(self):
        mr = dict(MARKET_REQUEST, requirements=[{"requirement": "ISO 9001", "is_mandatory": True}])
        result = evaluation_oracle.analyze_market_request(mr)
        assert sum(c["suggested_weight"] for c in result["suggested_criteria"]) == 100
        assert result["market_insights"]["expected_price_range"] == {"min": 1400.0, "max": 2000.0}
        assert 0 <= result["complexity_score"] <= 100

    def test_market_without_budget_flags_risk(self):
        result = evaluation_oracle.analyze_market_request(dict(MARKET_REQUEST, max_budget=None))
        assert "No maximum budget published" in result["market_insights"]["risk_factors"]

    def test_vendor_reply_missing_scores_fails_closed(self):
        with pytest.raises(EvaluationFailure) as exc:
            evaluation_oracle.parse_vendor_insights(json.dumps({"risk_level": "low"}), "test-model")
        assert "performance_score" in exc.value.details["fields"]


class TestRemoteProviders:
    """Retry and failure handling for remote providers."""

    def test_missing_api_key_fails_closed(self, monkeypatch, openai_provider):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
        with pytest.raises(EvaluationFailure) as exc_info:
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert "OPENAI_API_KEY" in exc_info.value.message

    def test_transport_errors_are_retried(self, monkeypatch, openai_provider):
        calls = []

        def flaky(prompt):
            calls.append(prompt)
            if len(calls) < 3:
                raise OracleTransportError("connection reset")
            return json.dumps(VALID)

        monkeypatch.setattr(evaluation_oracle, "_openai_completion", flaky)
        result = evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert len(calls) == 3
        assert result["overall_score"] == 80
        assert result["model_version"] == settings.OPENAI_MODEL

    def test_retries_are_bounded(self, monkeypatch, openai_provider):
        calls = []

        def down(prompt):
            calls.append(prompt)
            raise OracleTransportError("timeout")

        monkeypatch.setattr(evaluation_oracle, "_openai_completion", down)
        with pytest.raises(EvaluationFailure):
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert len(calls) == 3

    def test_bad_reply_is_not_retried(self, monkeypatch, openai_provider):
        calls = []

        def garbage(prompt):
            calls.append(prompt)
            return "I cannot evaluate this."

        monkeypatch.setattr(evaluation_oracle, "_openai_completion", garbage)
        with pytest.raises(EvaluationFailure):
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert len(calls) == 1

    def test_empty_choices_fail_closed(self, openai_reply):
        openai_reply(choices=[])
        with pytest.raises(EvaluationFailure) as exc_info:
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert "no choices" in exc_info.value.message

    def test_null_content_fails_closed(self, openai_reply):
        openai_reply(choices=[SimpleNamespace(message=SimpleNamespace(content=None))])
        with pytest.raises(EvaluationFailure) as exc_info:
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert "empty response" in exc_info.value.message

    def test_reply_through_client_is_parsed(self, openai_reply):
        openai_reply(choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps(VALID)))])
        result = evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert result["overall_score"] == 80

    def test_unexpected_provider_error_is_wrapped(self, monkeypatch, openai_provider):
        def broken(prompt):
            raise IndexError("list index out of range")

        monkeypatch.setattr(evaluation_oracle, "_openai_completion", broken)
        with pytest.raises(EvaluationFailure) as exc_info:
            evaluation_oracle.evaluate(PROPOSAL, MARKET_REQUEST)
        assert isinstance(exc_info.value.__cause__, IndexError)
        assert exc_info.value.details == {"provider": "openai"}

    def test_prompt_carries_proposal_and_request(self):
        prompt = evaluation_oracle.build_evaluation_prompt(PROPOSAL, MARKET_REQUEST, [{"status": "accepted"}])
        assert "Chairs" in prompt
        assert "Supply Co" in prompt
        assert '"status": "accepted"' in prompt
