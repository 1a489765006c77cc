"""Data models for Civicwatch."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import math

from civicwatch.utils import parse_timestamp

# Report categories offered by the reporting client (value -> label)
CATEGORIES: Dict[str, str] = {
    "water": "Water & Sanitation",
    "electricity": "Electricity",
    "roads": "Roads & Transport",
    "waste": "Waste Management",
    "safety": "Safety & Security",
    "other": "Other",
}


def _coerce_float(value: Any) -> float:
    """Coerce API coordinates (numbers or numeric strings) to float; NaN when unusable."""
    if value is None or isinstance(value, bool):
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _first(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class Report:
    id: str
    lat: float
    lng: float
    category: str
    title: str = ""
    description: str = ""
    created_at: Optional[datetime] = None
    upvote_count: int = 0
    address: str = ""
    status: str = "pending"
    # Review flags sent with a new report, e.g. flagged_as_potential_duplicate
    metadata: Optional[Dict[str, Any]] = field(default=None, compare=False, hash=False)

    @property
    def text(self) -> str:
        """Title and description joined, the input for keyword extraction."""
        return f"{self.title} {self.description}"

    @property
    def has_valid_coordinates(self) -> bool:
        lat, lng = self.lat, self.lng
        if not (isinstance(lat, (int, float)) and isinstance(lng, (int, float))):
            return False
        if not (math.isfinite(lat) and math.isfinite(lng)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

    @classmethod
    def from_dict(cls, data: dict) -> "Report":
        """Build a Report from an API/JSON payload (snake_case or camelCase keys)."""
        try:
            upvotes = int(_first(data, "upvote_count", "upvoteCount", "upvotes", default=0))
        except (TypeError, ValueError):
            upvotes = 0
        return cls(
            id=str(_first(data, "id", default="")),
            lat=_coerce_float(_first(data, "lat", "latitude")),
            lng=_coerce_float(_first(data, "lng", "lon", "longitude")),
            category=str(_first(data, "category", default="other")).strip().lower(),
            title=str(_first(data, "title", default="")),
            description=str(_first(data, "description", default="")),
            created_at=parse_timestamp(_first(data, "created_at", "createdAt")),
            upvote_count=max(0, upvotes),
            address=str(_first(data, "address", default="")),
            status=str(_first(data, "status", default="pending")),
            metadata=dict(data["metadata"]) if isinstance(data.get("metadata"), dict) else None,
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "lat": self.lat,
            "lng": self.lng,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "upvote_count": self.upvote_count,
            "address": self.address,
            "status": self.status,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


@dataclass
class DuplicateCandidate:
    report: Report
    distance_meters: float = 0.0
    keyword_similarity: float = 0.0
    confidence: float = 0.0
    reasons: List[str] = field(default_factory=list)
    is_duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "report": self.report.to_dict(),
            "distance_meters": round(self.distance_meters),
            "keyword_similarity": round(self.keyword_similarity, 3),
            "confidence": round(self.confidence, 3),
            "reasons": list(self.reasons),
            "is_duplicate": self.is_duplicate,
        }


@dataclass(frozen=True)
class Viewport:
    """Visible map extent: a centre plus the span of each axis, in degrees."""
    center_lat: float
    center_lng: float
    lat_delta: float
    lng_delta: float

    def __post_init__(self):
        values = (self.center_lat, self.center_lng, self.lat_delta, self.lng_delta)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in values):
            raise ValueError(f"Viewport values must be finite numbers: {values}")
        if self.lat_delta <= 0 or self.lng_delta <= 0:
            raise ValueError(
                f"Viewport deltas must be positive (lat_delta={self.lat_delta}, lng_delta={self.lng_delta})"
            )

    @property
    def area(self) -> float:
        return self.lat_delta * self.lng_delta

    @classmethod
    def parse(cls, value: str) -> "Viewport":
        """Parse 'lat,lng,lat_delta,lng_delta'."""
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Invalid viewport '{value}'. Use LAT,LNG,LAT_DELTA,LNG_DELTA")
        try:
            lat, lng, dlat, dlng = (float(p) for p in parts)
        except ValueError:
            raise ValueError(f"Invalid viewport '{value}'. Values must be numbers")
        return cls(lat, lng, dlat, dlng)

    @classmethod
    def from_dict(cls, data: dict) -> "Viewport":
        """Accept both our field names and the map widget's region keys."""
        try:
            return cls(
                center_lat=float(_first(data, "center_lat", "centerLat", "latitude", "lat")),
                center_lng=float(_first(data, "center_lng", "centerLng", "longitude", "lng")),
                lat_delta=float(_first(data, "lat_delta", "latDelta", "latitudeDelta")),
                lng_delta=float(_first(data, "lng_delta", "lngDelta", "longitudeDelta")),
            )
        except TypeError:
            raise ValueError(f"Incomplete viewport: {data}")


@dataclass(frozen=True)
class DuplicateConfig:
    max_distance_km: float = 0.5
    min_keyword_similarity: float = 0.3
    max_age_hours: float = 168.0
    min_confidence: float = 0.6
    unique_keywords: bool = False
    policy: str = "either"  # either | confidence | both
