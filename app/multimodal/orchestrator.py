"""
Multimodal search orchestration.

Fans out the train and flight searches concurrently, waits for both to settle,
then normalizes whatever offers came back and builds the ranked itineraries.
A failure on one side never prevents results from the other.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from app.config import settings
from app.junction.client import JunctionClient
from app.multimodal.builder import build_multimodal_itineraries
from app.multimodal.normalize import normalize_flight_offers, normalize_train_offers
from app.obs.logger import log_event
from app.obs.metrics import inc_counter, record_timing
from app.rank.selector import rank_itineraries
from app.types import MultimodalSearchRequest, MultimodalSearchResult, TransportMode
from app.utils.dates import to_iso_date


class InvalidDepartureDateError(ValueError):
    """The requested departure date could not be understood."""


class SearchOrchestrator:
    """Run one multimodal search end to end"""

    def __init__(self, client: JunctionClient, departure_time: Optional[str] = None,
                 passenger_dob: Optional[str] = None, tz: Optional[str] = None):
        self.client = client
        self.departure_time = departure_time or settings.DEPARTURE_TIME
        self.passenger_dob = passenger_dob or settings.PASSENGER_DOB
        self.tz = tz or settings.TZ

    def departure_after(self, departure_date: str) -> str:
        """'2025-06-01' or 'next Friday' -> '2025-06-01T10:00:00Z'.

        Raises InvalidDepartureDateError when the date cannot be understood.
        """
        iso_date = to_iso_date(departure_date, tz=self.tz)
        if not iso_date:
            raise InvalidDepartureDateError(f"Invalid departure date: {departure_date!r}")
        return f"{iso_date}{self.departure_time}"

    async def fetch_offers(self, mode: TransportMode, origin_id: str, destination_id: str,
                           departure_after: str) -> List[Dict[str, Any]]:
        search_id = await self.client.initiate_search(
            mode, origin_id, destination_id, departure_after, self.passenger_dob
        )
        return await self.client.poll_offers(mode, search_id)

    async def search(self, request: MultimodalSearchRequest) -> MultimodalSearchResult:
        start = time.monotonic()
        departure_after = self.departure_after(request.departure_date)

        modes = (TransportMode.TRAIN, TransportMode.FLIGHT)
        settled = await asyncio.gather(
            *(self.fetch_offers(mode, request.origin.id, request.destination.id, departure_after)
              for mode in modes),
            return_exceptions=True,
        )
        (train_offers, train_error), (flight_offers, flight_error) = (
            self._settle(mode, outcome) for mode, outcome in zip(modes, settled)
        )

        train_legs, _ = normalize_train_offers(train_offers, request.origin, request.destination)
        flight_legs, _ = normalize_flight_offers(flight_offers)

        mapping_issue = not train_legs and not flight_legs and bool(train_offers or flight_offers)
        if mapping_issue:
            log_event("offers_unmappable", level="WARNING",
                      train_offers=len(train_offers), flight_offers=len(flight_offers))

        itineraries = build_multimodal_itineraries(train_legs, flight_legs)
        result = MultimodalSearchResult(
            itineraries=itineraries,
            ranked=rank_itineraries(itineraries),
            train_offers=len(train_offers),
            flight_offers=len(flight_offers),
            train_legs=len(train_legs),
            flight_legs=len(flight_legs),
            train_error=train_error,
            flight_error=flight_error,
            mapping_issue=mapping_issue,
        )

        elapsed_ms = (time.monotonic() - start) * 1000.0
        record_timing("search_latency_ms", elapsed_ms)
        log_event(
            "multimodal_search_complete",
            origin=request.origin.id,
            destination=request.destination.id,
            departure_after=departure_after,
            train_offers=result.train_offers,
            flight_offers=result.flight_offers,
            itineraries=len(itineraries),
            train_error=train_error,
            flight_error=flight_error,
            ms_total=round(elapsed_ms, 2),
        )
        return result

    @staticmethod
    def _settle(mode: TransportMode, outcome: Any) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """gather() outcome -> (offers, error message)."""
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            inc_counter("upstream_search_failures_total", {"mode": mode.value})
            log_event("upstream_search_failed", level="WARNING", mode=mode.value,
                      error=f"{type(outcome).__name__}: {outcome}")
            return [], str(outcome) or type(outcome).__name__
        return list(outcome or []), None
