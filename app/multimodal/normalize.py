"""
Offer normalization: raw train/flight offers -> canonical Leg.

Upstream offers are shaped
    {id, price: {amount, currency}, owner?, metadata?,
     trips: [{segments: [{origin, destination, departureAt, arrivalAt,
                          vehicle?, marketing_carrier?, operating_carrier?}]}]}

Only the first trip is used. Anything structurally unusable maps to None so a
single bad offer never aborts the batch.
"""

import math
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple

from app.obs.logger import log_event
from app.obs.metrics import inc_counter
from app.types import Leg, PlaceInfo, SelectedPlace, TransportMode, UNKNOWN_CITY
from app.utils.dates import minutes_between, parse_iso_instant, round_half_up

UNKNOWN_TRAIN_OPERATOR = "Unknown Train Operator"
UNKNOWN_AIRLINE = "Unknown Airline"
UNKNOWN_STATION = "Unknown Station"
UNKNOWN_PLACE = "Unknown Place"

# Plain non-negative decimal, optional exponent. No signs, underscores, inf or nan.
_DECIMAL_RE = re.compile(r"\s*(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*", re.ASCII)
_TRAILING_SEPARATORS = re.compile(r"[\s,]+$")

Extractor = Callable[[dict, dict], Any]


def _get(obj: Any, *path: str) -> Any:
    """Walk nested dicts, returning None on the first missing or non-dict hop."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def first_non_empty(strategies: Sequence[Extractor], offer: dict, segment: dict) -> Optional[str]:
    """Try extraction strategies in order; return the first non-empty string."""
    for strategy in strategies:
        value = strategy(offer, segment)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


# Precedence lists, highest priority first
TRAIN_OPERATOR_STRATEGIES: Tuple[Extractor, ...] = (
    lambda offer, seg: _get(seg, "vehicle", "name"),
    lambda offer, seg: _get(offer, "metadata", "providerId"),
)

FLIGHT_OPERATOR_STRATEGIES: Tuple[Extractor, ...] = (
    lambda offer, seg: _get(offer, "owner", "name"),
    lambda offer, seg: _get(seg, "marketing_carrier", "name"),
    lambda offer, seg: _get(seg, "operating_carrier", "name"),
)


def resolve_operator(mode: TransportMode, offer: dict, segment: dict) -> str:
    if mode == TransportMode.TRAIN:
        return first_non_empty(TRAIN_OPERATOR_STRATEGIES, offer, segment) or UNKNOWN_TRAIN_OPERATOR
    return first_non_empty(FLIGHT_OPERATOR_STRATEGIES, offer, segment) or UNKNOWN_AIRLINE


def _split_last_comma(name: str) -> Tuple[str, Optional[str]]:
    """'Heathrow Airport, London' -> ('Heathrow Airport', 'London').

    Trailing separators are dropped first, so 'Lyon,' -> ('Lyon', None).
    """
    name = _TRAILING_SEPARATORS.sub("", name).strip()
    if "," not in name:
        return name, None
    head, _, tail = name.rpartition(",")
    return head.strip(), tail.strip() or None


def train_place_info(station: Optional[SelectedPlace]) -> PlaceInfo:
    """PlaceInfo for a train endpoint, from the place the user selected.

    city: explicit cityName, else the text after the last comma, else the
    whole name.
    """
    if station is None or not station.name:
        return PlaceInfo(name=UNKNOWN_STATION, city=UNKNOWN_CITY)
    head, parsed_city = _split_last_comma(station.name)
    city = station.city_name or parsed_city or head or station.name
    return PlaceInfo(name=head or station.name, city=city)


def flight_place_info(place: Any) -> PlaceInfo:
    """PlaceInfo for a flight endpoint, from the segment's embedded place.

    city: explicit city_name/cityName, else the text after the last comma,
    else the Unknown City sentinel.
    """
    if isinstance(place, str) and place.strip():
        # bare place id, nothing to derive a city from
        return PlaceInfo(name=place.strip(), city=UNKNOWN_CITY)
    if not isinstance(place, dict):
        return PlaceInfo(name=UNKNOWN_PLACE, city=UNKNOWN_CITY)

    raw_name = place.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) and raw_name.strip() else UNKNOWN_PLACE
    head, parsed_city = _split_last_comma(name)
    explicit = place.get("city_name") or place.get("cityName")
    city = explicit if isinstance(explicit, str) and explicit.strip() else (parsed_city or UNKNOWN_CITY)
    return PlaceInfo(name=head or name, city=city)


def parse_price_minor(amount: Any) -> Optional[int]:
    """Decimal string/number in major units -> integer minor units, or None."""
    if isinstance(amount, bool) or not isinstance(amount, (str, int, float)):
        return None
    if isinstance(amount, str) and not _DECIMAL_RE.fullmatch(amount):
        return None
    try:
        value = float(amount)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return round_half_up(value * 100)


def compute_duration_minutes(depart: str, arrive: str) -> Optional[int]:
    minutes = minutes_between(depart, arrive)
    if minutes is None:
        return None
    return round_half_up(minutes)


def _skip(mode: TransportMode, offer: Any, reason: str, **fields: Any) -> None:
    offer_id = offer.get("id") if isinstance(offer, dict) else None
    log_event("offer_skipped", level="WARNING", mode=mode.value, offer_id=offer_id,
              reason=reason, **fields)
    return None


def _map_offer(
    mode: TransportMode,
    offer: Any,
    place_resolver: Callable[[dict, dict], Tuple[PlaceInfo, PlaceInfo]],
) -> Optional[Leg]:
    if not isinstance(offer, dict):
        return _skip(mode, offer, "offer is not an object")

    offer_id = offer.get("id")
    if offer_id is None or offer_id == "":
        return _skip(mode, offer, "missing offer id")

    trips = offer.get("trips")
    first_trip = trips[0] if isinstance(trips, list) and trips else None
    segments = _get(first_trip, "segments")
    if not isinstance(segments, list) or not segments:
        return _skip(mode, offer, "no trips or segments")

    first_segment, last_segment = segments[0], segments[-1]
    if not isinstance(first_segment, dict) or not isinstance(last_segment, dict):
        return _skip(mode, offer, "segment is not an object")

    depart = first_segment.get("departureAt")
    arrive = last_segment.get("arrivalAt")
    if parse_iso_instant(depart) is None or parse_iso_instant(arrive) is None:
        return _skip(mode, offer, "missing or invalid departure/arrival time",
                     depart=depart, arrive=arrive)

    price = parse_price_minor(_get(offer, "price", "amount"))
    if price is None:
        return _skip(mode, offer, "missing or invalid price amount",
                     price=offer.get("price"))

    origin, destination = place_resolver(first_segment, last_segment)
    currency = _get(offer, "price", "currency")

    return Leg(
        id=str(offer_id),
        mode=mode,
        operator=resolve_operator(mode, offer, first_segment),
        origin=origin,
        destination=destination,
        depart=depart,
        arrive=arrive,
        price=price,
        duration_minutes=compute_duration_minutes(depart, arrive),
        currency=currency if isinstance(currency, str) else None,
    )


def map_train_offer_to_leg(
    offer: Any,
    original_origin: Optional[SelectedPlace],
    original_destination: Optional[SelectedPlace],
) -> Optional[Leg]:
    """Train offer -> Leg. Segment endpoints are bare ids, so display identity
    comes from the stations the user originally selected."""
    try:
        return _map_offer(
            TransportMode.TRAIN,
            offer,
            lambda first, last: (train_place_info(original_origin), train_place_info(original_destination)),
        )
    except Exception as e:
        return _skip(TransportMode.TRAIN, offer, f"unexpected error: {type(e).__name__}: {e}")


def map_flight_offer_to_leg(offer: Any) -> Optional[Leg]:
    """Flight offer -> Leg. Origin comes from the first segment, destination from the last."""
    try:
        return _map_offer(
            TransportMode.FLIGHT,
            offer,
            lambda first, last: (flight_place_info(first.get("origin")), flight_place_info(last.get("destination"))),
        )
    except Exception as e:
        return _skip(TransportMode.FLIGHT, offer, f"unexpected error: {type(e).__name__}: {e}")


def normalize_train_offers(
    offers: List[Any],
    original_origin: Optional[SelectedPlace],
    original_destination: Optional[SelectedPlace],
) -> Tuple[List[Leg], int]:
    """Map a batch of train offers, returning (legs, skipped_count)."""
    legs = [map_train_offer_to_leg(o, original_origin, original_destination) for o in offers or []]
    return _collect(TransportMode.TRAIN, legs)


def normalize_flight_offers(offers: List[Any]) -> Tuple[List[Leg], int]:
    """Map a batch of flight offers, returning (legs, skipped_count)."""
    legs = [map_flight_offer_to_leg(o) for o in offers or []]
    return _collect(TransportMode.FLIGHT, legs)


def _collect(mode: TransportMode, maybe_legs: List[Optional[Leg]]) -> Tuple[List[Leg], int]:
    legs = [leg for leg in maybe_legs if leg is not None]
    skipped = len(maybe_legs) - len(legs)
    inc_counter("offers_skipped_total", {"mode": mode.value}, amount=skipped)
    return legs, skipped
