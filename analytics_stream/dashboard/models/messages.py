"""Realtime stream message models.

Every inbound frame is a JSON object with a ``type`` discriminant. Each
variant knows which reducer actions it stands for (``to_actions``).

Generic variants work on any dashboard; the event, user and monitoring
variants match the wire format of their respective streams.
"""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .actions import (
    Action,
    PatchSummary,
    RemoveCategorical,
    Unknown,
    UpsertCategorical,
    UpsertGridCell,
    UpsertSeriesPoint,
)

Scalar = Union[str, int, float]


class StreamMessage(BaseModel):
    """Common envelope for all stream messages."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str

    def to_actions(self) -> list[Action]:
        return []


# Generic variants


class SummaryPatchMessage(StreamMessage):
    type: Literal["summary-patch"] = "summary-patch"
    summary: dict[str, float]

    def to_actions(self) -> list[Action]:
        return [PatchSummary(self.summary)]


class SeriesPointUpsertMessage(StreamMessage):
    type: Literal["series-point-upsert"] = "series-point-upsert"
    series: str
    key: Scalar
    point: Union[dict[str, Any], float]
    key_field: str = Field(default="timestamp", alias="keyField")

    def to_actions(self) -> list[Action]:
        return [UpsertSeriesPoint(self.series, self.key, self.point, self.key_field)]


class CategoricalUpsertMessage(StreamMessage):
    type: Literal["categorical-upsert"] = "categorical-upsert"
    collection: str
    key: Scalar
    value: Union[dict[str, Any], float]
    key_field: str = Field(default="key", alias="keyField")

    def to_actions(self) -> list[Action]:
        return [UpsertCategorical(self.collection, self.key, self.value, self.key_field)]


class GridCellUpsertMessage(StreamMessage):
    type: Literal["grid-cell-upsert"] = "grid-cell-upsert"
    collection: str
    row: Scalar
    column: Scalar
    value: Union[dict[str, Any], float]

    def to_actions(self) -> list[Action]:
        return [UpsertGridCell(self.collection, self.row, self.column, self.value)]


# Event analytics stream


class EventSummaryMessage(StreamMessage):
    """Partial summary update: ``{"type": "summary", "data": {...}}``."""

    type: Literal["summary"] = "summary"
    data: dict[str, float]

    def to_actions(self) -> list[Action]:
        return [PatchSummary(self.data)]


class AttendanceMessage(StreamMessage):
    type: Literal["attendance"] = "attendance"
    event_id: str = Field(alias="eventId")
    event_name: str | None = Field(default=None, alias="eventName")
    date: str
    registrations: float
    attendance: float

    def to_actions(self) -> list[Action]:
        point: dict[str, Any] = {
            "eventId": self.event_id,
            "date": self.date,
            "registrations": self.registrations,
            "attendance": self.attendance,
        }
        if self.event_name is not None:
            point["eventName"] = self.event_name
        return [
            UpsertSeriesPoint(
                f"attendance:{self.event_id}", self.date, point, key_field="date"
            )
        ]


class ConversionMessage(StreamMessage):
    type: Literal["conversion"] = "conversion"
    stage: str
    value: float

    def to_actions(self) -> list[Action]:
        return [
            UpsertCategorical(
                "conversions",
                self.stage,
                {"stage": self.stage, "value": self.value},
                key_field="stage",
            )
        ]


class FunnelMessage(StreamMessage):
    type: Literal["funnel"] = "funnel"
    stage: str
    count: float

    def to_actions(self) -> list[Action]:
        return [
            UpsertCategorical(
                "funnel",
                self.stage,
                {"stage": self.stage, "count": self.count},
                key_field="stage",
            )
        ]


class HeatmapMessage(StreamMessage):
    """Day/hour activity cell, shared by the event and user streams."""

    type: Literal["heatmap"] = "heatmap"
    day: str
    hour: int
    value: float

    def to_actions(self) -> list[Action]:
        return [
            UpsertGridCell(
                "heatmap", self.day, self.hour, self.value, key_fields=("day", "hour")
            )
        ]


# User analytics stream


class EngagementPoint(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    timestamp: str
    active_users: float = Field(default=0, alias="activeUsers")
    interactions: float = 0
    matches: float = 0


class EngagementMessage(StreamMessage):
    type: Literal["engagement"] = "engagement"
    summary: dict[str, float] | None = None
    point: EngagementPoint | None = None

    def to_actions(self) -> list[Action]:
        actions: list[Action] = []
        if self.summary:
            actions.append(PatchSummary(self.summary))
        if self.point is not None:
            actions.append(
                UpsertSeriesPoint(
                    "engagement",
                    self.point.timestamp,
                    self.point.model_dump(by_alias=True, exclude_unset=True),
                )
            )
        return actions


# System monitoring stream

HealthStatus = Literal["operational", "degraded", "critical", "maintenance"]


class MetricMessage(StreamMessage):
    """One indicator reading for one service."""

    type: Literal["metric"] = "metric"
    service_id: str = Field(alias="serviceId")
    indicator: str
    value: float
    unit: str | None = None
    status: HealthStatus | None = None
    trend: float | None = None
    timestamp: str

    def to_actions(self) -> list[Action]:
        service: dict[str, Any] = {"id": self.service_id}
        if self.status is not None:
            service["status"] = self.status

        reading: dict[str, Any] = {
            "serviceId": self.service_id,
            "type": self.indicator,
            "value": self.value,
            "lastUpdatedAt": self.timestamp,
        }
        if self.unit:
            reading["unit"] = self.unit
        if self.trend is not None:
            reading["trend"] = self.trend

        return [
            UpsertCategorical("services", self.service_id, service, key_field="id"),
            UpsertGridCell(
                "indicators",
                self.service_id,
                self.indicator,
                reading,
                key_fields=("serviceId", "type"),
            ),
            UpsertSeriesPoint(
                f"history:{self.service_id}:{self.indicator}",
                self.timestamp,
                {"timestamp": self.timestamp, "value": self.value},
            ),
        ]


class Acknowledgement(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    acknowledged_by: str = Field(alias="acknowledgedBy")
    acknowledged_at: str = Field(alias="acknowledgedAt")


class StatusMessage(StreamMessage):
    """Status update for one service."""

    type: Literal["status"] = "status"
    service_id: str = Field(alias="serviceId")
    status: HealthStatus
    uptime_percentage: float | None = Field(default=None, alias="uptimePercentage")
    last_checked_at: str | None = Field(default=None, alias="lastCheckedAt")
    last_incident_at: str | None = Field(default=None, alias="lastIncidentAt")
    acknowledgement: Acknowledgement | None = None

    def to_actions(self) -> list[Action]:
        fields = self.model_dump(
            by_alias=True,
            exclude_none=True,
            include={
                "status",
                "uptime_percentage",
                "last_checked_at",
                "last_incident_at",
                "acknowledgement",
            },
        )
        fields["id"] = self.service_id
        return [UpsertCategorical("statuses", self.service_id, fields, key_field="id")]


class Incident(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    service_id: str = Field(alias="serviceId")
    severity: Literal["warning", "critical"] = "warning"
    indicator: str | None = None
    message: str = ""
    started_at: str | None = Field(default=None, alias="startedAt")
    acknowledged: bool | None = None
    acknowledged_by: str | None = Field(default=None, alias="acknowledgedBy")
    resolved_at: str | None = Field(default=None, alias="resolvedAt")


class IncidentMessage(StreamMessage):
    """Opened, updated or resolved incident. Resolved incidents leave the open set."""

    type: Literal["incident"] = "incident"
    incident: Incident

    def to_actions(self) -> list[Action]:
        if self.incident.resolved_at:
            return [RemoveCategorical("incidents", self.incident.id)]
        return [
            UpsertCategorical(
                "incidents",
                self.incident.id,
                self.incident.model_dump(by_alias=True, exclude_none=True),
                key_field="id",
            )
        ]


class UnknownMessage(StreamMessage):
    """Well-formed message whose discriminant no variant claims."""

    payload: dict[str, Any] = Field(default_factory=dict)

    def to_actions(self) -> list[Action]:
        return [Unknown(self.type, self.payload)]


MessageRegistry = dict[str, type[StreamMessage]]

GENERIC_MESSAGES: MessageRegistry = {
    "summary-patch": SummaryPatchMessage,
    "series-point-upsert": SeriesPointUpsertMessage,
    "categorical-upsert": CategoricalUpsertMessage,
    "grid-cell-upsert": GridCellUpsertMessage,
}

EVENT_MESSAGES: MessageRegistry = {
    **GENERIC_MESSAGES,
    "summary": EventSummaryMessage,
    "attendance": AttendanceMessage,
    "conversion": ConversionMessage,
    "funnel": FunnelMessage,
    "heatmap": HeatmapMessage,
}

USER_MESSAGES: MessageRegistry = {
    **GENERIC_MESSAGES,
    "engagement": EngagementMessage,
    "heatmap": HeatmapMessage,
}

MONITORING_MESSAGES: MessageRegistry = {
    **GENERIC_MESSAGES,
    "metric": MetricMessage,
    "status": StatusMessage,
    "incident": IncidentMessage,
}


def parse_message(data: dict[str, Any], registry: MessageRegistry) -> StreamMessage:
    """Parse a decoded frame into its typed variant.

    Unknown discriminants return an UnknownMessage; malformed known variants
    raise pydantic.ValidationError.
    """
    discriminant = data.get("type", "")
    message_class = registry.get(discriminant)
    if message_class is None:
        return UnknownMessage(type=discriminant, payload=data)
    return message_class.model_validate(data)
