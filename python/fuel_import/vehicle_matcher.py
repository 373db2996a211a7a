"""
Vehicle Matcher Module

Ties a statement row to a fleet vehicle by asset id, or by odometer proximity
when the card export carries no usable vehicle id.
"""

import logging
from collections.abc import Iterable

from .config import MatchingConfig
from .models import MatchResult, MatchType, RawStatementRow, VehicleDirectoryEntry

logger = logging.getLogger(__name__)


class VehicleMatcher:
    """Matches statement rows to vehicles in the fleet directory."""

    DIRECT_MATCH_CONFIDENCE = 1.0

    def __init__(self, config: MatchingConfig | None = None):
        """Initialize the matcher.

        Args:
            config: Odometer tolerance and confidence settings
        """
        self.config = config or MatchingConfig()
        self.odometer_tolerance = self.config.odometer_tolerance
        self.max_odometer_confidence = min(self.config.max_odometer_confidence, 0.99)

    def match(
        self,
        row: RawStatementRow,
        directory: Iterable[VehicleDirectoryEntry]
    ) -> MatchResult:
        """Match a single row.

        Args:
            row: Parsed statement row
            directory: Known fleet vehicles

        Returns:
            MatchResult (Unmatched when no single vehicle fits)
        """
        vehicles = list(directory)

        direct = self._match_direct(row.vehicle_identifier, vehicles)
        if direct:
            return direct

        if not row.has_odometer:
            return MatchResult.unmatched("No odometer reading available")

        return self._match_odometer(row.odometer, vehicles)

    def _match_direct(
        self,
        identifier: str,
        vehicles: list[VehicleDirectoryEntry]
    ) -> MatchResult | None:
        identifier = (identifier or "").strip()
        if not identifier:
            return None

        for vehicle in vehicles:
            if vehicle.asset_id and vehicle.asset_id == identifier:
                return MatchResult(
                    match_type=MatchType.DIRECT_ID,
                    confidence=self.DIRECT_MATCH_CONFIDENCE,
                    vehicle_id=vehicle.id,
                    asset_id=vehicle.asset_id,
                    vehicle_name=vehicle.display_name,
                    candidate_count=1,
                )

        return None

    def _match_odometer(
        self,
        odometer: int,
        vehicles: list[VehicleDirectoryEntry]
    ) -> MatchResult:
        candidates = []
        for vehicle in vehicles:
            if not vehicle.active or vehicle.current_odometer is None:
                continue

            distance = abs(vehicle.current_odometer - odometer)
            if distance <= self.odometer_tolerance:
                candidates.append((distance, vehicle))

        if not candidates:
            return MatchResult.unmatched(
                "No matching vehicle found based on odometer reading"
            )

        # More than one plausible vehicle is ambiguous, even when one is closer
        if len(candidates) > 1:
            logger.debug(
                f"Odometer {odometer} fits {len(candidates)} vehicles, leaving unmatched"
            )
            return MatchResult.unmatched(
                f"Odometer reading fits {len(candidates)} vehicles",
                candidate_count=len(candidates),
            )

        distance, vehicle = candidates[0]
        return MatchResult(
            match_type=MatchType.ODOMETER,
            confidence=self._odometer_confidence(distance),
            vehicle_id=vehicle.id,
            asset_id=vehicle.asset_id,
            vehicle_name=vehicle.display_name,
            candidate_count=1,
            odometer_distance=distance,
        )

    def _odometer_confidence(self, distance: int) -> float:
        """Scale confidence down linearly with distance from the last known reading."""
        closeness = 1.0 - (distance / self.odometer_tolerance)
        return round(max(0.0, self.max_odometer_confidence * closeness), 4)
