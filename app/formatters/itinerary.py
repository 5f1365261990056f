from typing import List, Optional

from app.types import Itinerary, Leg, MultimodalSearchResult, RankedItineraries, TransportMode
from app.utils.dates import format_clock, format_duration_minutes

_MODE_LABEL = {TransportMode.TRAIN: "Train", TransportMode.FLIGHT: "Flight"}


def format_price_minor(price: int, currency: Optional[str] = None) -> str:
    """17000, "EUR" -> "EUR 170.00"."""
    amount = f"{price / 100:.2f}"
    return f"{currency} {amount}" if currency else amount


def itinerary_currency(itinerary: Itinerary) -> Optional[str]:
    currencies = {leg.currency for leg in itinerary.legs if leg.currency}
    # mixed-currency sums are shown without a unit rather than mislabelled
    return currencies.pop() if len(currencies) == 1 else None


def format_leg_line(leg: Leg) -> str:
    dur = format_duration_minutes(leg.duration_minutes) if leg.duration_minutes is not None else ""
    parts = [
        f"{_MODE_LABEL.get(leg.mode, leg.mode)} {leg.operator}",
        f"{format_clock(leg.depart)} {leg.origin.name} → {format_clock(leg.arrive)} {leg.destination.name}",
    ]
    if dur:
        parts.append(dur)
    return " | ".join(parts)


def format_itinerary(itinerary: Itinerary) -> str:
    transfers = "direct" if itinerary.transfers == 0 else f"{itinerary.transfers} transfer"
    header = (f"• {format_duration_minutes(itinerary.total_duration)} | {transfers} | "
              f"{format_price_minor(itinerary.total_price, itinerary_currency(itinerary))}")
    lines = [header] + [f"   {format_leg_line(leg)}" for leg in itinerary.legs]
    return "\n".join(lines)


def format_results(itineraries: List[Itinerary], ranked: RankedItineraries, limit: int = 5) -> str:
    if not itineraries:
        return "Sorry, no trains or flights matched. Try a different date or nearby stations?"

    parts = [
        f"Found {len(itineraries)} options.",
        "",
        f"FASTEST\n{format_itinerary(ranked.fastest)}" if ranked.fastest else "FASTEST\n(none)",
        "",
        "CHEAPEST",
    ]
    if ranked.cheapest:
        parts += [format_itinerary(c) for c in ranked.cheapest]
    else:
        parts.append("(none)")

    parts += ["", "ALL BY DURATION"]
    parts += [format_itinerary(it) for it in itineraries[:limit]]
    if len(itineraries) > limit:
        parts.append(f"…and {len(itineraries) - limit} more")
    return "\n".join(parts)


def format_search_result(result: MultimodalSearchResult, limit: int = 5) -> str:
    """Full text reply for a search, with a note for each mode that failed upstream."""
    text = format_results(result.itineraries, result.ranked, limit=limit)
    notes = [f"{label} search unavailable: {error}"
             for label, error in (("Train", result.train_error), ("Flight", result.flight_error))
             if error]
    if result.mapping_issue:
        notes.append("Offers were found but none could be read.")
    return "\n".join([text, ""] + notes) if notes else text
