from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_CITY = "Unknown City"


class TransportMode(str, Enum):
    TRAIN = "train"
    FLIGHT = "flight"


class PlaceInfo(BaseModel):
    """Display-level location. `city` is the key used for connection matching."""
    model_config = ConfigDict(frozen=True)

    name: str
    city: str


def same_city(a: PlaceInfo, b: PlaceInfo) -> bool:
    """True when both places resolve to the same known city (case-insensitive).

    The "Unknown City" sentinel never matches anything, itself included.
    """
    if a.city == UNKNOWN_CITY or b.city == UNKNOWN_CITY:
        return False
    return a.city.lower() == b.city.lower()


class SelectedPlace(BaseModel):
    """Station or airport picked by the user from place autocomplete."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    city_name: Optional[str] = Field(None, alias="cityName")
    iata_code: Optional[str] = Field(None, alias="iataCode")
    type: Optional[str] = None  # "railway-station" | "airport"


class Leg(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str                    # upstream offer id, used for booking
    mode: TransportMode
    operator: str
    origin: PlaceInfo = Field(alias="from")
    destination: PlaceInfo = Field(alias="to")
    depart: str                # ISO-8601 as received
    arrive: str
    price: int                 # minor units (cents)
    duration_minutes: Optional[int] = Field(None, alias="durationMinutes")
    currency: Optional[str] = None


class Itinerary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str                    # synthesized, no booking meaning
    legs: List[Leg] = Field(min_length=1, max_length=2)
    total_duration: int = Field(alias="totalDuration")
    total_price: int = Field(alias="totalPrice")
    transfers: int


class RankedItineraries(BaseModel):
    fastest: Optional[Itinerary]
    cheapest: List[Itinerary]  # top 2 cheapest (excluding fastest if dup)


class MultimodalSearchRequest(BaseModel):
    origin: SelectedPlace
    destination: SelectedPlace
    departure_date: str = Field(..., description="YYYY-MM-DD or a phrase like 'next Friday'")


class MultimodalSearchResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    itineraries: List[Itinerary] = Field(default_factory=list)
    ranked: RankedItineraries
    train_offers: int = Field(0, alias="trainOffers")
    flight_offers: int = Field(0, alias="flightOffers")
    train_legs: int = Field(0, alias="trainLegs")
    flight_legs: int = Field(0, alias="flightLegs")
    train_error: Optional[str] = Field(None, alias="trainError")
    flight_error: Optional[str] = Field(None, alias="flightError")
    mapping_issue: bool = Field(False, alias="mappingIssue")
