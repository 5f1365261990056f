from typing import List
from app.types import Itinerary, RankedItineraries

def rank_itineraries(itineraries: List[Itinerary]) -> RankedItineraries:
    if not itineraries:
        return RankedItineraries(fastest=None, cheapest=[])
    # fastest by total_duration (stable: earliest built wins ties)
    fastest = min(itineraries, key=lambda x: x.total_duration)

    # cheapest by price, excluding the fastest itinerary itself
    sorted_by_price = sorted(itineraries, key=lambda x: (x.total_price, x.total_duration))
    cheapest = []
    for it in sorted_by_price:
        if it.id != fastest.id:
            cheapest.append(it)
        if len(cheapest) == 2:
            break
    return RankedItineraries(fastest=fastest, cheapest=cheapest)
