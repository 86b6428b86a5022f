"""
Display status for charging points and stations.

The classifier is a pure function of a snapshot. ``AvailabilityService``
builds snapshots from the stores and never writes point or session state.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..models import ChargingPoint, ChargingSession, PointStatus, Station
from ..repositories import ChargingPointRepository, SessionRepository, StationRepository
from .battery import estimate_battery
from .errors import PointNotFound, StationNotFound

LIMITED_RATIO = 0.3


class AvailabilityClass(str, Enum):
    AVAILABLE = "available"
    SOON_AVAILABLE = "soon_available"
    INCOMPATIBLE = "incompatible"
    FULL = "full"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


@dataclass(frozen=True)
class ClassInfo:
    priority: int
    color: str
    label: str


# Sort order for list views, lower first. Stable; do not renumber.
CLASS_TABLE: dict[AvailabilityClass, ClassInfo] = {
    AvailabilityClass.AVAILABLE: ClassInfo(1, "#16a34a", "Available"),
    AvailabilityClass.SOON_AVAILABLE: ClassInfo(2, "#eab308", "Available soon"),
    AvailabilityClass.INCOMPATIBLE: ClassInfo(3, "#f59e0b", "Not compatible"),
    AvailabilityClass.FULL: ClassInfo(4, "#dc2626", "Full"),
    AvailabilityClass.MAINTENANCE: ClassInfo(5, "#6b7280", "Under maintenance"),
    AvailabilityClass.OFFLINE: ClassInfo(6, "#374151", "Offline"),
}


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """
    Signals for one point or one station.

    ``next_available_minutes`` is the predicted time until a spot frees up,
    when something predicts it (None otherwise).
    """

    status: PointStatus
    available_spots: int
    total_spots: int
    next_available_minutes: int | None = None
    vehicle_compatibility: tuple[str, ...] = ()
    subject_id: str | None = None
    name: str = ""


@dataclass(frozen=True)
class Availability:
    availability_class: AvailabilityClass
    priority: int
    color: str
    status_label: str
    description: str
    is_bookable: bool
    limited: bool
    snapshot: AvailabilitySnapshot = field(repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.snapshot.subject_id,
            "name": self.snapshot.name,
            "class": self.availability_class.value,
            "priority": self.priority,
            "color": self.color,
            "status_label": self.status_label,
            "description": self.description,
            "is_bookable": self.is_bookable,
            "limited": self.limited,
            "available_spots": self.snapshot.available_spots,
            "total_spots": self.snapshot.total_spots,
            "next_available_minutes": self.snapshot.next_available_minutes,
        }


def is_compatible(compatibility, vehicle_type: str | None) -> bool:
    """Case-insensitive substring match; no vehicle or no list means compatible."""
    if not vehicle_type or not compatibility:
        return True
    needle = vehicle_type.lower()
    return any(needle in entry.lower() for entry in compatibility)


class AvailabilityClassifier:
    """
    First matching rule wins:

    1. Maintenance
    2. Offline
    3. no free spot, predicted free within the threshold -> soon_available
    4. no free spot -> full
    5. free spot, vehicle not compatible -> incompatible
    6. free spot -> available
    """

    def __init__(self, soon_available_minutes: int = 10):
        self.soon_available_minutes = soon_available_minutes

    def classify(self, snapshot: AvailabilitySnapshot, vehicle_type: str | None = None) -> Availability:
        status = PointStatus(snapshot.status)
        spots = snapshot.available_spots
        minutes = snapshot.next_available_minutes

        if status == PointStatus.MAINTENANCE:
            cls, description = AvailabilityClass.MAINTENANCE, "Under maintenance and can not be used"
        elif status == PointStatus.OFFLINE:
            cls, description = AvailabilityClass.OFFLINE, "Currently not operating"
        elif spots <= 0 and minutes is not None and minutes <= self.soon_available_minutes:
            cls, description = (
                AvailabilityClass.SOON_AVAILABLE,
                f"A spot is expected to free up in {minutes} minutes",
            )
        elif spots <= 0:
            cls, description = AvailabilityClass.FULL, "All charging spots are in use"
        elif not is_compatible(snapshot.vehicle_compatibility, vehicle_type):
            cls, description = (
                AvailabilityClass.INCOMPATIBLE,
                "Spots are free but not compatible with your vehicle",
            )
        else:
            cls, description = (
                AvailabilityClass.AVAILABLE,
                f"{spots}/{snapshot.total_spots} spots free",
            )

        info = CLASS_TABLE[cls]
        limited = (
            cls == AvailabilityClass.AVAILABLE
            and snapshot.total_spots > 0
            and spots / snapshot.total_spots <= LIMITED_RATIO
        )
        return Availability(
            availability_class=cls,
            priority=info.priority,
            color=info.color,
            status_label=info.label,
            description=description,
            is_bookable=cls in (AvailabilityClass.AVAILABLE, AvailabilityClass.SOON_AVAILABLE),
            limited=limited,
            snapshot=snapshot,
        )


def _minutes_until_free(session: ChargingSession | None, now: datetime) -> int | None:
    if session is None:
        return None
    battery = estimate_battery(session, now)
    return battery.minutes_remaining if battery else None


def _min_known(values) -> int | None:
    known = [v for v in values if v is not None]
    return min(known) if known else None


def _compatibility(station: Station | None, points: list[ChargingPoint]) -> tuple[str, ...]:
    entries = list(station.vehicle_compatibility) if station else []
    for point in points:
        if point.connector_type and point.connector_type not in entries:
            entries.append(point.connector_type)
    return tuple(entries)


class AvailabilityService:
    """Builds snapshots from the point, station and session stores and classifies them."""

    def __init__(
        self,
        stations: StationRepository,
        points: ChargingPointRepository,
        sessions: SessionRepository,
        classifier: AvailabilityClassifier | None = None,
    ):
        self.stations = stations
        self.points = points
        self.sessions = sessions
        self.classifier = classifier or AvailabilityClassifier()

    async def point_snapshot(self, point_id: str, now: datetime | None = None) -> AvailabilitySnapshot:
        now = now or datetime.now(UTC)
        point = await self.points.get_by_id(point_id)
        if point is None:
            raise PointNotFound(point_id)
        station = await self.stations.get_by_id(point.station_id)

        status = point.status
        if station is not None and station.status in (PointStatus.MAINTENANCE, PointStatus.OFFLINE):
            status = station.status

        next_available = None
        if point.status == PointStatus.IN_USE:
            occupant = await self.sessions.get_active_for_point(point_id)
            next_available = _minutes_until_free(occupant, now)

        return AvailabilitySnapshot(
            status=status,
            available_spots=1 if point.status == PointStatus.AVAILABLE else 0,
            total_spots=1,
            next_available_minutes=next_available,
            vehicle_compatibility=_compatibility(station, [point]),
            subject_id=point.id,
            name=point.name,
        )

    async def station_snapshot(
        self,
        station_id: str,
        now: datetime | None = None,
        active_by_point: dict[str, ChargingSession] | None = None,
    ) -> AvailabilitySnapshot:
        now = now or datetime.now(UTC)
        station = await self.stations.get_by_id(station_id)
        if station is None:
            raise StationNotFound(station_id)
        points = await self.points.get_all_for_station(station_id)
        if active_by_point is None:
            active_by_point = await self._active_by_point()

        return AvailabilitySnapshot(
            status=self._station_status(station, points),
            available_spots=sum(1 for p in points if p.status == PointStatus.AVAILABLE),
            total_spots=len(points),
            next_available_minutes=_min_known(
                _minutes_until_free(active_by_point.get(p.id), now)
                for p in points
                if p.status == PointStatus.IN_USE
            ),
            vehicle_compatibility=_compatibility(station, points),
            subject_id=station.id,
            name=station.name,
        )

    async def classify_point(
        self, point_id: str, vehicle_type: str | None = None, now: datetime | None = None
    ) -> Availability:
        return self.classifier.classify(await self.point_snapshot(point_id, now), vehicle_type)

    async def classify_station(
        self, station_id: str, vehicle_type: str | None = None, now: datetime | None = None
    ) -> Availability:
        return self.classifier.classify(await self.station_snapshot(station_id, now), vehicle_type)

    async def classify_all_stations(
        self, vehicle_type: str | None = None, now: datetime | None = None
    ) -> list[Availability]:
        """Every station, ordered for list views: priority, then name."""
        now = now or datetime.now(UTC)
        active_by_point = await self._active_by_point()
        results = []
        for station in await self.stations.get_all():
            snapshot = await self.station_snapshot(station.id, now, active_by_point)
            results.append(self.classifier.classify(snapshot, vehicle_type))
        return sorted(results, key=lambda a: (a.priority, a.snapshot.name, a.snapshot.subject_id))

    async def _active_by_point(self) -> dict[str, ChargingSession]:
        return {s.point_id: s for s in await self.sessions.get_all_active()}

    @staticmethod
    def _station_status(station: Station, points: list[ChargingPoint]) -> PointStatus:
        if station.status in (PointStatus.MAINTENANCE, PointStatus.OFFLINE):
            return station.status
        # A station whose every point is down takes the points' status
        down = [p.status for p in points if p.status in (PointStatus.MAINTENANCE, PointStatus.OFFLINE)]
        if points and len(down) == len(points):
            return PointStatus.OFFLINE if all(s == PointStatus.OFFLINE for s in down) else PointStatus.MAINTENANCE
        return station.status
