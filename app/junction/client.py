import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.config import settings
from app.infrastructure.resilience import CircuitBreaker, RetryPolicy
from app.obs.context import search_id_var
from app.obs.logger import log_event
from app.types import TransportMode

PLACE_TYPES = ("railway-station", "airport")


class UpstreamSearchError(Exception):
    """The offers API answered, but not in a way we can use."""


class UpstreamClientError(UpstreamSearchError):
    """4xx from the offers API: the request itself was rejected."""


class UpstreamServerError(UpstreamSearchError):
    """5xx (or other non-4xx failure status) from the offers API."""


@dataclass
class PollState:
    """Progress of one offers poll. Lives for a single poll_offers() call."""
    mode: TransportMode
    search_id: str
    attempts: int = 0
    last_status: Optional[int] = None
    offers: List[Dict[str, Any]] = field(default_factory=list)


class JunctionClient:
    """Async client for the train/flight offer search API.

    Searches are two-step: POST /{mode}-searches returns 202 with a Location
    header naming the search; offers then appear at
    GET /{mode}-searches/{id}/offers once the upstream has collected them.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        max_poll_attempts: Optional[int] = None,
        poll_interval: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.JUNCTION_BASE_URL).rstrip("/")
        self.max_poll_attempts = max(1, max_poll_attempts or settings.POLL_MAX_ATTEMPTS)
        self.poll_interval = settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self._sleep = sleep
        # Persistent HTTP client with HTTP/2 and sensible timeouts
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            http2=True,
            transport=transport,
            timeout=httpx.Timeout(
                connect=settings.HTTP_CONNECT_TIMEOUT,
                read=settings.HTTP_READ_TIMEOUT,
                write=settings.HTTP_READ_TIMEOUT,
                pool=settings.HTTP_READ_TIMEOUT,
            ),
            headers={
                "x-api-key": api_key if api_key is not None else settings.JUNCTION_API_KEY,
                "Accept": "application/json",
            },
        )
        # Single retry with short backoff, only for connection-level failures
        self._retry = RetryPolicy(
            max_attempts=2,
            backoff_base=1.5,
            retry_on=(httpx.TransportError,),
            sleep=sleep,
        )
        self.breakers: Dict[TransportMode, CircuitBreaker] = {
            # Rejected requests (4xx) say nothing about upstream health
            mode: CircuitBreaker(
                f"{mode.value}_search",
                failure_threshold=5,
                recovery_timeout=60,
                expected_exception=(httpx.TransportError, UpstreamServerError),
            )
            for mode in TransportMode
        }

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "JunctionClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Search initiation
    # ------------------------------------------------------------------

    async def initiate_search(self, mode: TransportMode, origin_id: str, destination_id: str,
                              departure_after: str, passenger_dob: str) -> str:
        """Start a search and return its id, e.g. 'train_search_abc123'."""
        mode = TransportMode(mode)
        return await self.breakers[mode].async_call(
            self._retry.execute_with_retry,
            self._initiate_once,
            mode, origin_id, destination_id, departure_after, passenger_dob,
        )

    async def _initiate_once(self, mode: TransportMode, origin_id: str, destination_id: str,
                             departure_after: str, passenger_dob: str) -> str:
        body = {
            "originId": origin_id,
            "destinationId": destination_id,
            "departureAfter": departure_after,
            "returnDepartureAfter": None,
            "passengerAges": [{"dateOfBirth": passenger_dob}],
        }
        log_event("search_initiate", mode=mode.value, origin_id=origin_id,
                  destination_id=destination_id, departure_after=departure_after)

        r = await self._http.post(f"/{mode.value}-searches", json=body,
                                  headers={"Content-Type": "application/json"})
        if r.status_code != 202:
            error_cls = UpstreamClientError if 400 <= r.status_code < 500 else UpstreamServerError
            raise error_cls(
                f"Failed to initiate {mode.value} search: {r.status_code} {r.text}"
            )

        location = r.headers.get("Location")
        if not location:
            raise UpstreamSearchError(
                f"Location header missing in {mode.value} search initiation response"
            )
        search_id = parse_search_id(mode, location)
        if not search_id:
            raise UpstreamSearchError(
                f"Could not parse {mode.value} search id from Location header: {location}"
            )
        log_event("search_initiated", mode=mode.value, search_id=search_id)
        return search_id

    # ------------------------------------------------------------------
    # Offer polling
    # ------------------------------------------------------------------

    async def poll_offers(self, mode: TransportMode, search_id: str) -> List[Dict[str, Any]]:
        """Poll until offers appear or attempts run out.

        Returns [] when the search produced nothing in time. Raises
        UpstreamSearchError only when the final attempt itself fails.
        """
        state = PollState(mode=TransportMode(mode), search_id=search_id)
        token = search_id_var.set(search_id)
        try:
            while state.attempts < self.max_poll_attempts:
                state.attempts += 1
                if state.attempts > 1:
                    await self._sleep(self.poll_interval)
                if await self._poll_once(state):
                    log_event("offers_found", mode=state.mode.value,
                              attempt=state.attempts, count=len(state.offers))
                    return state.offers

            log_event("offers_not_found", mode=state.mode.value, attempts=state.attempts)
            return []
        finally:
            search_id_var.reset(token)

    def _is_final(self, state: PollState) -> bool:
        return state.attempts >= self.max_poll_attempts

    async def _poll_once(self, state: PollState) -> bool:
        """One GET of the offers list. True once offers are stored on state."""
        url = f"/{state.mode.value}-searches/{state.search_id}/offers"
        final = self._is_final(state)
        try:
            r = await self._http.get(url)
        except httpx.HTTPError as e:
            return self._poll_failed(state, final, f"{type(e).__name__}: {e}", e)

        state.last_status = r.status_code
        if not r.is_success:
            return self._poll_failed(state, final, f"status {r.status_code}: {r.text}")

        if not r.content:
            log_event("offers_pending", mode=state.mode.value, attempt=state.attempts,
                      status=r.status_code)
            return False

        try:
            data = r.json()
        except ValueError as e:
            return self._poll_failed(state, final, f"unparseable body: {e}", e)

        items = data.get("items") if isinstance(data, dict) else None
        if isinstance(items, list) and items:
            state.offers = items
            return True

        log_event("offers_pending", mode=state.mode.value, attempt=state.attempts,
                  status=r.status_code)
        return False

    def _poll_failed(self, state: PollState, final: bool, detail: str,
                     cause: Optional[BaseException] = None) -> bool:
        log_event("offers_poll_failed", level="WARNING", mode=state.mode.value,
                  attempt=state.attempts, detail=detail)
        if final:
            raise UpstreamSearchError(
                f"Failed to fetch {state.mode.value} offers after {state.attempts} attempts: {detail}"
            ) from cause
        return False

    # ------------------------------------------------------------------
    # Places
    # ------------------------------------------------------------------

    async def search_places(self, query: str) -> List[Dict[str, Any]]:
        """Railway stations followed by airports whose name matches query."""
        q = (query or "").strip()
        if not q:
            return []
        try:
            stations, airports = await asyncio.gather(
                *(self._fetch_places(place_type, q) for place_type in PLACE_TYPES)
            )
        except (httpx.HTTPError, ValueError) as e:
            log_event("places_lookup_failed", level="WARNING", query=q,
                      error=f"{type(e).__name__}: {e}")
            return []
        return stations + airports

    async def _fetch_places(self, place_type: str, query: str) -> List[Dict[str, Any]]:
        r = await self._http.get(
            "/places",
            params={"filter[type][eq]": place_type, "filter[name][like]": query},
        )
        if not r.is_success:
            return []
        data = r.json()
        places = data.get("data") if isinstance(data, dict) else None
        return [{**p, "type": place_type} for p in places or [] if isinstance(p, dict)]


def parse_search_id(mode: TransportMode, location: str) -> Optional[str]:
    """'/train-searches/train_search_ab12/offers' -> 'train_search_ab12'."""
    mode = TransportMode(mode)
    match = re.search(rf"{mode.value}-searches/({mode.value}_search_[a-zA-Z0-9]+)", location)
    return match.group(1) if match else None
