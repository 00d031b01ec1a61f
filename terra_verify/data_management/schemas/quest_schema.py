"""Quest schema: what evidence a published eco-action expects.

Quests are read-only inputs to verification. A quest is frozen once
constructed; republishing means creating a new record.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class QuestCategory(str, Enum):
    """Fixed quest categories, including the seasonal variants."""

    WASTE = "waste"
    ENERGY = "energy"
    WATER = "water"
    BIODIVERSITY = "biodiversity"
    TRANSPORT = "transport"
    WILDLIFE_CONSERVATION = "Wildlife Conservation"
    GARDENING = "Gardening"


class QuestDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Coordinate(BaseModel):
    """WGS84 latitude/longitude pair."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Longitude in degrees")

    model_config = {"frozen": True}


class Quest(BaseModel):
    """A published environmental task with category, difficulty and reward.

    location is the expected site used for geofencing. When only
    location_radius_m is set, verification falls back to the configured
    default site.
    """

    id: str = Field(..., description="Quest identifier")
    title: str = Field(default="", description="Display title")
    summary: str = Field(default="", description="Short description")
    category: QuestCategory = Field(..., description="Quest category")
    difficulty: QuestDifficulty = Field(
        default=QuestDifficulty.EASY, description="Difficulty level"
    )
    points: int = Field(..., gt=0, description="Points awarded on approval")
    location_hint: Optional[str] = Field(
        default=None, description="Free-text hint for where to do the quest"
    )
    location: Optional[Coordinate] = Field(
        default=None, description="Expected site for geofencing"
    )
    location_radius_m: Optional[float] = Field(
        default=None, gt=0, description="Allowed distance from the site in meters"
    )
    expiry: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc) + timedelta(days=30),
        description="When the quest stops accepting submissions",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @field_validator("difficulty", mode="before")
    @classmethod
    def normalize_difficulty(cls, value):
        # Seasonal quests were authored with capitalised difficulties
        if isinstance(value, str):
            return value.lower()
        return value

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "id": "q-native-plants",
                    "title": "Native Plant Guardian",
                    "category": "biodiversity",
                    "difficulty": "medium",
                    "points": 25,
                    "locationHint": "School garden",
                    "location": {"lat": 40.7128, "lng": -74.006},
                    "locationRadiusM": 1000,
                }
            ]
        },
    }
