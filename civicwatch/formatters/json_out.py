"""JSON output."""
import json
from typing import List, Optional
from civicwatch.models import DuplicateCandidate, Report, Viewport
from civicwatch.viewport import density_ceiling


class JSONFormatter:
    def __init__(self, indent: Optional[int] = 2):
        self.indent = indent

    def format_duplicates(self, candidates: List[DuplicateCandidate]) -> str:
        return json.dumps([c.to_dict() for c in candidates], indent=self.indent, ensure_ascii=False)

    def format_markers(self, reports: List[Report], viewport: Viewport, low_spec: bool = False) -> str:
        return json.dumps({
            "viewport": {
                "center_lat": viewport.center_lat,
                "center_lng": viewport.center_lng,
                "lat_delta": viewport.lat_delta,
                "lng_delta": viewport.lng_delta,
            },
            "ceiling": density_ceiling(viewport, low_spec=low_spec),
            "count": len(reports),
            "markers": [r.to_dict() for r in reports],
        }, indent=self.indent, ensure_ascii=False)

    def format_submission(self, result) -> str:
        return json.dumps(result.to_dict(), indent=self.indent, ensure_ascii=False)
