import json

import httpx
import pytest

from conftest import NOW, SUMMARY_RECORDS, TIMELINE_RECORDS
from principal_crm.dashboard import (
    build_interaction_payload,
    fetch_engagement_breakdown,
    load_dataset_from_api,
)
from principal_crm.loaders import PrincipalActivityApi

BASE = "https://crm.example.com"


def _json_default(value):
    return str(value)


def _respond(status_code=200, payload=None):
    body = json.dumps(payload, default=_json_default).encode()
    return httpx.Response(status_code, content=body, headers={"Content-Type": "application/json"})


def make_api(handler) -> PrincipalActivityApi:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return PrincipalActivityApi(BASE + "/", api_key="anon-key", client=client)


@pytest.fixture()
def calls():
    return []


class TestRequests:
    def test_activity_summary_params_and_headers(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(200, [{"principal_id": "p-1"}])

        api = make_api(handler)
        resp = api.get_activity_summary(
            principal_ids=["p-1", "p-2"], activity_status=["ACTIVE"], engagement_min=50
        )

        assert resp.success
        assert resp.data == [{"principal_id": "p-1"}]
        request = calls[0]
        assert request.url.path == "/rest/v1/principal_activity_summary"
        assert request.url.params["order"] == "engagement_score.desc"
        assert request.url.params["principal_id"] == "in.(p-1,p-2)"
        assert request.url.params["activity_status"] == "in.(ACTIVE)"
        assert request.url.params["engagement_score"] == "gte.50"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"

    def test_search_uses_ilike(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(200, [])

        resp = make_api(handler).search_principals(" acme ", active_only=True, limit=5)
        assert resp.success
        params = calls[0].url.params
        assert params["principal_name"] == "ilike.*acme*"
        assert params["activity_status"] == "in.(ACTIVE,MODERATE)"
        assert params["limit"] == "5"

    def test_follow_up_query(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(200, [])

        make_api(handler).get_principals_requiring_follow_up()
        assert calls[0].url.params["or"] == "(follow_ups_required.gt.0,engagement_score.gte.75)"

    def test_timeline_is_per_principal(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(200, [])

        make_api(handler).get_timeline("p-1", limit=10)
        params = calls[0].url.params
        assert calls[0].url.path == "/rest/v1/principal_timeline_summary"
        assert params["principal_id"] == "eq.p-1"
        assert params["limit"] == "10"

    def test_interactions_skip_deleted(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(200, [])

        make_api(handler).get_interactions("p-1", limit=20)
        params = calls[0].url.params
        assert calls[0].url.path == "/rest/v1/interactions"
        assert params["deleted_at"] == "is.null"
        assert params["organization_id"] == "eq.p-1"
        assert params["limit"] == "20"


class TestErrors:
    def test_http_error_uses_message(self):
        api = make_api(lambda request: _respond(500, {"message": "relation does not exist"}))
        resp = api.get_activity_summary()
        assert not resp.success
        assert resp.error == "relation does not exist"
        assert resp.data is None

    def test_http_error_without_body(self):
        api = make_api(lambda request: httpx.Response(503))
        resp = api.get_product_performance()
        assert not resp.success
        assert resp.error == "HTTP 503 Service Unavailable"

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        resp = make_api(handler).get_distributor_relationships()
        assert not resp.success
        assert resp.error == "connection refused"

    def test_invalid_json(self):
        api = make_api(lambda request: httpx.Response(200, content=b"<html>oops</html>"))
        resp = api.get_opportunities()
        assert not resp.success
        assert resp.error == "Invalid JSON in response"


class TestRpcAndWrites:
    def test_stats_first_row(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(200, [{"total_principals": 4}, {"total_principals": 9}])

        resp = make_api(handler).get_principal_stats()
        assert resp.success
        assert resp.data == {"total_principals": 4}
        assert calls[0].method == "POST"
        assert calls[0].url.path == "/rest/v1/rpc/get_principal_activity_stats"

    def test_refresh_summary(self, calls):
        def handler(request):
            calls.append(request)
            return httpx.Response(204)

        resp = make_api(handler).refresh_activity_summary()
        assert resp.success
        assert resp.data is None
        assert calls[0].url.path == "/rest/v1/rpc/refresh_principal_activity_summary"

    def test_stats_empty(self):
        resp = make_api(lambda request: _respond(200, [])).get_principal_stats()
        assert not resp.success
        assert resp.error == "No statistics available"

    def test_engagement_breakdown(self, calls):
        rows = [
            {"engagement_score": 90, "activity_status": "ACTIVE"},
            {"engagement_score": 50, "activity_status": "MODERATE"},
            {"engagement_score": 10, "activity_status": "STALE"},
            {"engagement_score": 95, "activity_status": "NO_ACTIVITY"},
        ]

        def handler(request):
            calls.append(request)
            return _respond(200, rows)

        resp = fetch_engagement_breakdown(make_api(handler))
        assert calls[0].url.params["select"] == "engagement_score,activity_status"
        assert resp.success
        assert resp.data == {
            "high_engagement": 1,
            "medium_engagement": 1,
            "low_engagement": 1,
            "inactive": 1,
        }

    def test_engagement_breakdown_passes_errors_through(self):
        resp = fetch_engagement_breakdown(make_api(lambda request: _respond(500, {"message": "boom"})))
        assert not resp.success
        assert resp.error == "boom"

    def test_log_interaction_requires_fields(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(201, [])

        resp = make_api(handler).log_interaction({"organization_id": "p-1", "subject": ""})
        assert not resp.success
        assert resp.error == "Missing required fields: interaction_type, subject"
        assert calls == []

    def test_log_interaction_posts_form_payload(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(201, [{"id": "i-9", **json.loads(request.content)}])

        payload, errors = build_interaction_payload("p-1", "CALL", "Volume call", "2025-03-03", now=NOW)
        assert errors == {}
        resp = make_api(handler).log_interaction(payload)
        assert resp.success
        assert resp.data["id"] == "i-9"
        assert calls[0].method == "POST"
        assert calls[0].url.path == "/rest/v1/interactions"
        assert json.loads(calls[0].content)["organization_id"] == "p-1"

    def test_create_opportunity_unwraps_row(self, calls):
        def handler(request):
            calls.append(request)
            return _respond(201, [{"id": "o-9", **json.loads(request.content)}])

        payload = {"name": "Acme - Brisket", "principal_organization_id": "p-1", "stage": "New Lead"}
        resp = make_api(handler).create_opportunity(payload)
        assert resp.success
        assert resp.data["id"] == "o-9"
        assert resp.data["stage"] == "New Lead"
        assert calls[0].headers["prefer"] == "return=representation"


def test_dataset_from_api_survives_failed_views():
    def handler(request):
        view = request.url.path.rsplit("/", 1)[-1]
        if view == "principal_activity_summary":
            return _respond(200, SUMMARY_RECORDS)
        if view == "principal_timeline_summary":
            principal_id = request.url.params["principal_id"].removeprefix("eq.")
            return _respond(200, [r for r in TIMELINE_RECORDS if r["principal_id"] == principal_id])
        if view == "principal_product_performance":
            return _respond(500, {"message": "permission denied"})
        return _respond(200, [])

    dataset, errors = load_dataset_from_api(make_api(handler), NOW)

    assert errors == {"products": "permission denied"}
    assert len(dataset["summaries"]) == 4
    assert len(dataset["timeline"]) == 5
    assert dataset["products"].empty
    assert dataset["relationships"].empty
