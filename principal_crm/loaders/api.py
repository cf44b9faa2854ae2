"""
PostgREST client for the principal activity views.

Every call returns an ApiResponse instead of raising, so the dashboard
can render an error banner with a retry button for each failed fetch
independently.

Views and functions used:
    principal_activity_summary, principal_distributor_relationships,
    principal_product_performance, principal_timeline_summary,
    interactions, opportunities,
    rpc/get_principal_activity_stats, rpc/refresh_principal_activity_summary
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_ENGAGED_STATUSES = ("ACTIVE", "MODERATE")


@dataclass
class ApiResponse:
    success: bool
    data: Any = None
    error: str | None = None


def _in_list(values) -> str:
    return "in.(" + ",".join(str(v) for v in values) + ")"


class PrincipalActivityApi:
    """Thin wrapper over the Supabase REST endpoint.

    Parameters
    ----------
    base_url : Project URL, e.g. https://xyz.supabase.co
    api_key : anon or service key, sent as apikey and bearer token.
    timeout : Request timeout in seconds.
    client : Optional preconfigured httpx.Client (tests pass one with a
        MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings, client: httpx.Client | None = None) -> "PrincipalActivityApi":
        return cls(settings.api_url, settings.api_key, settings.timeout_seconds, client)

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json_data: dict | list | None = None,
        extra_headers: dict | None = None,
    ) -> ApiResponse:
        url = f"{self._base_url}/{path}"
        headers = {**self._headers, **(extra_headers or {})}
        try:
            resp = self._client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json() if resp.content else None
        except httpx.HTTPStatusError as exc:
            message = _error_message(exc.response)
            logger.error("%s %s failed (%d): %s", method, path, exc.response.status_code, message)
            return ApiResponse(success=False, error=message)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            return ApiResponse(success=False, error=str(exc) or exc.__class__.__name__)
        except ValueError as exc:
            logger.error("%s %s returned invalid JSON: %s", method, path, exc)
            return ApiResponse(success=False, error="Invalid JSON in response")
        return ApiResponse(success=True, data=data)

    # -----------------------------------------------------------------------
    # Activity summaries
    # -----------------------------------------------------------------------

    def get_activity_summary(
        self,
        principal_ids: list[str] | None = None,
        activity_status: list[str] | None = None,
        engagement_min: float | None = None,
        last_activity_days: int | None = None,
    ) -> ApiResponse:
        """Principal activity summaries, highest engagement first."""
        params: dict[str, str] = {"select": "*", "order": "engagement_score.desc"}
        if principal_ids:
            params["principal_id"] = _in_list(principal_ids)
        if activity_status:
            params["activity_status"] = _in_list(activity_status)
        if engagement_min is not None:
            params["engagement_score"] = f"gte.{engagement_min}"
        if last_activity_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=last_activity_days)
            params["last_activity_date"] = f"gte.{cutoff.isoformat()}"
        resp = self._request("GET", "principal_activity_summary", params=params)
        if resp.success:
            logger.info("Fetched %d activity summaries", len(resp.data or []))
        return resp

    def get_principal_stats(self) -> ApiResponse:
        """Portfolio statistics from the get_principal_activity_stats function (first row)."""
        resp = self._request("POST", "rpc/get_principal_activity_stats", json_data={})
        if not resp.success:
            return resp
        rows = resp.data if isinstance(resp.data, list) else [resp.data] if resp.data else []
        if not rows:
            return ApiResponse(success=False, error="No statistics available")
        return ApiResponse(success=True, data=rows[0])

    def refresh_activity_summary(self) -> ApiResponse:
        """Refresh the materialised activity summary view."""
        return self._request("POST", "rpc/refresh_principal_activity_summary", json_data={})

    def get_engagement_rows(self) -> ApiResponse:
        """Score and status columns for every principal."""
        return self._request(
            "GET",
            "principal_activity_summary",
            params={"select": "engagement_score,activity_status"},
        )

    def get_principals_requiring_follow_up(self) -> ApiResponse:
        return self._request(
            "GET",
            "principal_activity_summary",
            params={
                "select": "*",
                "or": "(follow_ups_required.gt.0,engagement_score.gte.75)",
                "order": "next_follow_up_date.asc.nullslast",
            },
        )

    def search_principals(
        self,
        term: str,
        active_only: bool = False,
        limit: int = 20,
    ) -> ApiResponse:
        """Case-insensitive name search over activity summaries."""
        params: dict[str, str] = {
            "select": "*",
            "principal_name": f"ilike.*{term.strip()}*",
            "order": "engagement_score.desc",
            "limit": str(limit),
        }
        if active_only:
            params["activity_status"] = _in_list(_ENGAGED_STATUSES)
        return self._request("GET", "principal_activity_summary", params=params)

    # -----------------------------------------------------------------------
    # Relationships, products, timeline
    # -----------------------------------------------------------------------

    def get_distributor_relationships(self, principal_ids: list[str] | None = None) -> ApiResponse:
        params: dict[str, str] = {"select": "*", "order": "principal_name.asc"}
        if principal_ids:
            params["principal_id"] = _in_list(principal_ids)
        return self._request("GET", "principal_distributor_relationships", params=params)

    def get_product_performance(
        self,
        principal_id: str | None = None,
        product_ids: list[str] | None = None,
    ) -> ApiResponse:
        params: dict[str, str] = {"select": "*", "order": "product_performance_score.desc"}
        if principal_id:
            params["principal_id"] = f"eq.{principal_id}"
        if product_ids:
            params["product_id"] = _in_list(product_ids)
        return self._request("GET", "principal_product_performance", params=params)

    def get_timeline(self, principal_id: str, limit: int = 50) -> ApiResponse:
        """Newest-first timeline entries for one principal."""
        return self._request(
            "GET",
            "principal_timeline_summary",
            params={
                "select": "*",
                "principal_id": f"eq.{principal_id}",
                "order": "activity_date.desc",
                "limit": str(limit),
            },
        )

    # -----------------------------------------------------------------------
    # Interactions and opportunities
    # -----------------------------------------------------------------------

    def get_interactions(self, principal_id: str | None = None, limit: int = 100) -> ApiResponse:
        params: dict[str, str] = {
            "select": "*",
            "deleted_at": "is.null",
            "order": "interaction_date.desc",
            "limit": str(limit),
        }
        if principal_id:
            params["organization_id"] = f"eq.{principal_id}"
        return self._request("GET", "interactions", params=params)

    def get_opportunities(self, principal_id: str | None = None) -> ApiResponse:
        params: dict[str, str] = {"select": "*", "order": "created_at.desc"}
        if principal_id:
            params["principal_organization_id"] = f"eq.{principal_id}"
        return self._request("GET", "opportunities", params=params)

    def log_interaction(self, payload: dict) -> ApiResponse:
        """Insert one interaction and return the stored row."""
        missing = [k for k in ("organization_id", "interaction_type", "subject") if not payload.get(k)]
        if missing:
            return ApiResponse(success=False, error=f"Missing required fields: {', '.join(missing)}")
        return self._insert("interactions", payload)

    def create_opportunity(self, payload: dict) -> ApiResponse:
        """Insert one opportunity and return the stored row."""
        missing = [k for k in ("name", "principal_organization_id", "stage") if not payload.get(k)]
        if missing:
            return ApiResponse(success=False, error=f"Missing required fields: {', '.join(missing)}")
        return self._insert("opportunities", payload)

    def _insert(self, table: str, payload: dict) -> ApiResponse:
        resp = self._request(
            "POST",
            table,
            json_data=payload,
            extra_headers={"Prefer": "return=representation"},
        )
        if resp.success and isinstance(resp.data, list):
            resp.data = resp.data[0] if resp.data else None
        return resp


def _error_message(response: httpx.Response) -> str:
    """PostgREST puts the reason in a JSON 'message' field; fall back to the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code} {response.reason_phrase}".strip()
