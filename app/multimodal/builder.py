"""
Itinerary construction from normalized train and flight legs.

Produces every direct leg as a one-leg itinerary plus every feasible
single-transfer combination (train->flight, flight->train) where the first
leg arrives in the city the second leg departs from, with at least
MIN_TRANSFER_MINUTES between them. Same-mode pairs and three-leg trips are
never built.
"""

import uuid
from typing import Iterable, List, Sequence

from app.obs.logger import log_event
from app.obs.metrics import inc_counter
from app.types import Itinerary, Leg, same_city
from app.utils.dates import minutes_between, round_half_up

MIN_TRANSFER_MINUTES = 60


def _itinerary_id(kind: str) -> str:
    return f"{kind}_{uuid.uuid4().hex}"


def total_duration(legs: Sequence[Leg]) -> int:
    """Elapsed minutes from the first departure to the last arrival.

    Includes connection dwell time. A single leg reuses its cached
    duration_minutes when present.
    """
    if not legs:
        log_event("itinerary_invariant_violation", level="ERROR",
                  reason="duration requested for empty legs list")
        raise ValueError("cannot compute duration of an itinerary with no legs")

    if len(legs) == 1 and legs[0].duration_minutes is not None:
        return legs[0].duration_minutes

    minutes = minutes_between(legs[0].depart, legs[-1].arrive)
    if minutes is None:
        log_event("itinerary_duration_unparseable", level="WARNING",
                  depart=legs[0].depart, arrive=legs[-1].arrive)
        return 0
    return round_half_up(minutes)


def make_itinerary(kind: str, legs: Sequence[Leg]) -> Itinerary:
    return Itinerary(
        id=_itinerary_id(kind),
        legs=list(legs),
        total_duration=total_duration(legs),
        total_price=sum(leg.price for leg in legs),
        transfers=len(legs) - 1,
    )


def connection_gap_minutes(first: Leg, second: Leg):
    """Minutes between first.arrive and second.depart, or None if unparseable."""
    return minutes_between(first.arrive, second.depart)


def can_connect(first: Leg, second: Leg) -> bool:
    if first.mode == second.mode:
        return False
    if not same_city(first.destination, second.origin):
        return False
    gap = connection_gap_minutes(first, second)
    if gap is None:
        log_event("connection_skipped", level="DEBUG", reason="unparseable time",
                  first_leg=first.id, second_leg=second.id)
        return False
    return gap >= MIN_TRANSFER_MINUTES


def _connections(kind: str, firsts: Iterable[Leg], seconds: List[Leg]) -> List[Itinerary]:
    built = []
    for first in firsts:
        for second in seconds:
            if can_connect(first, second):
                built.append(make_itinerary(kind, (first, second)))
    return built


def build_multimodal_itineraries(train_legs: List[Leg], flight_legs: List[Leg]) -> List[Itinerary]:
    """Build and rank all direct and single-transfer itineraries.

    Sorted ascending by total_duration; equal durations keep insertion order
    (direct trains, direct flights, train->flight, flight->train).
    """
    train_legs = list(train_legs or [])
    flight_legs = list(flight_legs or [])

    groups = {
        "train_direct": [make_itinerary("train_direct", [leg]) for leg in train_legs],
        "flight_direct": [make_itinerary("flight_direct", [leg]) for leg in flight_legs],
        "train_flight": _connections("train_flight", train_legs, flight_legs),
        "flight_train": _connections("flight_train", flight_legs, train_legs),
    }

    itineraries: List[Itinerary] = []
    for kind, built in groups.items():
        inc_counter("itineraries_built_total", {"kind": kind}, amount=len(built))
        itineraries.extend(built)

    log_event(
        "itineraries_built",
        train_legs=len(train_legs),
        flight_legs=len(flight_legs),
        **{kind: len(built) for kind, built in groups.items()},
        total=len(itineraries),
    )
    # stable sort: ties keep insertion order
    return sorted(itineraries, key=lambda it: it.total_duration)
