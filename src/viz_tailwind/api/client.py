"""Async client for the tailwind analytics backend."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

import httpx

from ..config import VizConfig, resolve_config
from ..types import ArrivalDetail, Hotspot, SlackEntry, SlackSign

__all__ = ["BackendError", "TailwindClient"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackendError(Exception):
    """Raised when the backend is unreachable or answers with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _csv(values: Iterable[Any]) -> str:
    return ",".join(str(v) for v in values if str(v).strip())


def _parse_rows(rows: Any, factory: Callable[[Mapping[str, Any]], T], path: str) -> List[T]:
    try:
        return [factory(item) for item in rows or []]
    except (KeyError, TypeError, ValueError) as exc:
        raise BackendError(f"Malformed response from {path}: {exc}") from exc


class TailwindClient:
    """Thin wrapper over ``httpx.AsyncClient`` for the backend endpoints.

    Usage::

        async with TailwindClient(config) as client:
            await client.login("user", "secret")
            hotspots = await client.hotspots(threshold=0.0)
    """

    def __init__(
        self,
        config: Optional[VizConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = resolve_config(config)
        self._token: Optional[str] = self.config.api_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.backend_url,
            timeout=self.config.request_timeout_s,
            transport=transport,
        )

    async def __aenter__(self) -> "TailwindClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    # ------------------------------ Transport ------------------------------
    def _headers(self) -> Dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            resp = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                data=data,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.error("Backend request %s %s failed: %s", method, path, exc)
            raise BackendError(f"Backend unreachable for {path}: {exc}") from exc

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.warning("Backend %s %s returned %d: %s", method, path, resp.status_code, detail)
            raise BackendError(f"Backend error {resp.status_code} for {path}: {detail}", resp.status_code)
        try:
            body = resp.json()
        except ValueError as exc:
            raise BackendError(f"Backend returned invalid JSON for {path}", resp.status_code) from exc
        if not isinstance(body, dict):
            raise BackendError(f"Unexpected response shape for {path}", resp.status_code)
        return body

    # ------------------------------- Auth ----------------------------------
    async def login(self, username: str, password: str) -> str:
        body = await self._request("POST", "/token", data={"username": username, "password": password})
        token = body.get("access_token")
        if not token:
            raise BackendError("Login response did not include an access token")
        self._token = str(token)
        return self._token

    # ----------------------------- Endpoints -------------------------------
    async def occupancy(self, traffic_volume_id: str) -> Dict[str, Any]:
        """Raw ``/tv_count_with_capacity`` payload for one traffic volume."""
        return await self._request("GET", "/tv_count_with_capacity", params={"traffic_volume_id": traffic_volume_id})

    async def hotspots(self, threshold: float = 0.0) -> List[Hotspot]:
        """Hotspots above ``threshold``, sorted by ``z_max`` descending."""
        body = await self._request("GET", "/hotspots", params={"threshold": threshold})
        items = _parse_rows(body.get("hotspots"), Hotspot.from_payload, "/hotspots")
        items.sort(key=lambda h: h.z_max, reverse=True)
        return items

    async def ranked_arrivals(
        self,
        traffic_volume_id: str,
        ref_time: str,
        *,
        seed_flight_ids: Iterable[str] = (),
        duration_min: Optional[int] = None,
        top_k: Optional[int] = None,
    ) -> List[ArrivalDetail]:
        params: Dict[str, Any] = {
            "traffic_volume_id": traffic_volume_id,
            "ref_time_str": ref_time,
            # required by the backend even when empty
            "seed_flight_ids": _csv(seed_flight_ids),
        }
        if duration_min is not None:
            params["duration_min"] = int(duration_min)
        if top_k is not None:
            params["top_k"] = int(top_k)
        body = await self._request("GET", "/regulation_ranking_tv_flights_ordered", params=params)
        return _parse_rows(body.get("ranked_flights"), ArrivalDetail.from_payload, "/regulation_ranking_tv_flights_ordered")

    async def ordered_flights(self, traffic_volume_id: str, ref_time: str) -> List[ArrivalDetail]:
        body = await self._request(
            "GET",
            "/tv_flights_ordered",
            params={"traffic_volume_id": traffic_volume_id, "ref_time_str": ref_time},
        )
        return _parse_rows(body.get("details"), ArrivalDetail.from_payload, "/tv_flights_ordered")

    async def tv_flights(self, traffic_volume_id: str, ref_time: Optional[str] = None) -> Dict[str, List[str]]:
        """``time window label -> flight ids`` for one traffic volume."""
        params: Dict[str, Any] = {"traffic_volume_id": traffic_volume_id}
        if ref_time is not None:
            params["ref_time_str"] = ref_time
        body = await self._request("GET", "/tv_flights", params=params)
        return {
            str(label): [str(f) for f in flights]
            for label, flights in body.items()
            if isinstance(flights, list)
        }

    async def slack_distribution(
        self,
        traffic_volume_id: str,
        ref_time: str,
        sign: SlackSign = "plus",
        delta_min: float = 0.0,
    ) -> List[SlackEntry]:
        if sign not in ("plus", "minus"):
            raise ValueError("sign must be 'plus' or 'minus'")
        body = await self._request(
            "GET",
            "/slack_distribution",
            params={
                "traffic_volume_id": traffic_volume_id,
                "ref_time_str": ref_time,
                "sign": sign,
                "delta_min": delta_min,
            },
        )
        return _parse_rows(body.get("results"), SlackEntry.from_payload, "/slack_distribution")

    async def flow_extraction(
        self,
        traffic_volume_id: str,
        ref_time: str,
        flight_ids: Iterable[str],
        *,
        threshold: Optional[float] = None,
        resolution: Optional[float] = None,
        seed: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "traffic_volume_id": traffic_volume_id,
            "ref_time_str": ref_time,
            "flight_ids": _csv(flight_ids),
        }
        for key, value in (("threshold", threshold), ("resolution", resolution), ("seed", seed), ("limit", limit)):
            if value is not None:
                params[key] = value
        return await self._request("GET", "/flow_extraction", params=params)

    async def simulate(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """POST a plan to ``/regulation_plan_simulation``."""
        regulations = payload.get("regulations")
        if not isinstance(regulations, list):
            raise ValueError("Invalid payload: expected {'regulations': [...]}")
        if not regulations:
            raise ValueError("No regulations provided")
        return await self._request("POST", "/regulation_plan_simulation", json=dict(payload))


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)
