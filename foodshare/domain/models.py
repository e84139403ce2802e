from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel

from foodshare.domain.state_machine import ReportStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class UserRole(StrEnum):
    HOTEL = "hotel"
    AGENT = "agent"
    ADMIN = "admin"


class FoodType(StrEnum):
    VEGETARIAN = "veg"
    NON_VEGETARIAN = "non_veg"
    SNACKS = "snacks"
    BEVERAGES = "beverages"
    DAIRY = "dairy"
    BAKERY = "bakery"


class Urgency(StrEnum):
    FLEXIBLE = "flexible"
    MEDIUM = "medium"
    URGENT = "urgent"


class ChangeOp(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class NotificationKind(StrEnum):
    NEW_TASK = "new_task"
    STATUS_UPDATE = "status_update"
    TASK_REMOVED = "task_removed"


class TaskSort(StrEnum):
    PRIORITY = "priority"
    DISTANCE = "distance"
    URGENCY = "urgency"
    QUANTITY = "quantity"
    NEWEST = "newest"
    PICKUP_TIME = "pickup_time"
    EARNINGS = "earnings"


FOOD_REPORTS_TABLE = "food_reports"


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    table_name: str = Field(index=True)
    op: ChangeOp = Field(index=True)
    entity_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    role: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    phone: str | None = None
    role: UserRole = Field(index=True)
    password_hash: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Hotel(SQLModel, table=True):
    __tablename__ = "hotels"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, unique=True)
    name: str = Field(index=True)
    street: str
    city: str = Field(index=True)
    landmark: str | None = None
    contact: str
    latitude: float | None = None
    longitude: float | None = None
    image_url: str | None = None
    rating: float | None = None
    total_food_saved: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class DeliveryAgent(SQLModel, table=True):
    __tablename__ = "delivery_agents"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, unique=True)
    unique_id: str = Field(index=True, unique=True)
    name: str
    contact: str
    zone: str = Field(index=True)
    area: str
    date_of_birth: date | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_active: bool = Field(default=True, index=True)
    total_deliveries: int = Field(default=0)
    rating: float | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class NeedyPerson(SQLModel, table=True):
    __tablename__ = "needy_persons"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    contact: str | None = None
    street: str
    city: str = Field(index=True)
    landmark: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    preferred_food_time: str | None = None
    notes: str | None = None
    registered_by: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class FoodReport(SQLModel, table=True):
    __tablename__ = "food_reports"
    __table_args__ = (
        Index("ix_food_reports_status_agent", "status", "assigned_agent_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    hotel_id: str = Field(foreign_key="hotels.id", index=True)
    food_name: str
    food_type: FoodType
    quantity: int
    pickup_time: datetime = Field(index=True)
    expiry_time: datetime | None = Field(default=None, index=True)
    description: str | None = None
    image_url: str | None = None
    status: ReportStatus = Field(default=ReportStatus.NEW, index=True)
    assigned_agent_id: str | None = Field(default=None, foreign_key="delivery_agents.id", index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class DistributionRecord(SQLModel, table=True):
    __tablename__ = "distribution_records"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    food_report_id: str = Field(foreign_key="food_reports.id", index=True)
    agent_id: str = Field(foreign_key="delivery_agents.id", index=True)
    needy_person_id: str = Field(foreign_key="needy_persons.id", index=True)
    quantity_distributed: int
    notes: str | None = None
    distributed_at: datetime = Field(default_factory=now_utc, index=True)


class ChangeEvent(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    table: str
    op: ChangeOp
    old: dict[str, Any] | None = None
    new: dict[str, Any]
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None

    @property
    def entity_id(self) -> str:
        return str(self.new.get("id", ""))

    @property
    def status_changed(self) -> bool:
        if self.old is None:
            return True
        return self.old.get("status") != self.new.get("status")


class NotificationPreferences(BaseModel):
    new_tasks: bool = True
    status_updates: bool = True
    proximity_alerts: bool = True
    urgent_tasks: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True


class Notification(BaseModel):
    kind: NotificationKind
    report_id: str
    title: str
    body: str
    tag: str
    urgent: bool = False
    require_interaction: bool = False
    sound: str | None = None
    vibration: list[int] | None = None


class GeoPoint(BaseModel):
    latitude: float
    longitude: float


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RegisterRequest(BaseModel):
    email: str
    name: str
    password: str
    role: UserRole
    phone: str | None = None


class DevLoginRequest(BaseModel):
    email: str
    password: str


class BootstrapAdminRequest(BaseModel):
    email: str
    name: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    permissions: list[str]


class UserRead(ORMReadModel):
    id: str
    email: str
    name: str
    phone: str | None
    role: UserRole
    is_active: bool
    created_at: datetime


class HotelCreate(BaseModel):
    name: str
    street: str
    city: str
    contact: str
    landmark: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    image_url: str | None = None


class HotelUpdate(BaseModel):
    name: str | None = None
    street: str | None = None
    city: str | None = None
    contact: str | None = None
    landmark: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    image_url: str | None = None


class HotelRead(ORMReadModel):
    id: str
    user_id: str
    name: str
    street: str
    city: str
    landmark: str | None
    contact: str
    latitude: float | None
    longitude: float | None
    image_url: str | None
    rating: float | None
    total_food_saved: int
    created_at: datetime
    updated_at: datetime


class HotelSummary(ORMReadModel):
    id: str
    name: str
    street: str
    city: str
    landmark: str | None
    contact: str
    latitude: float | None
    longitude: float | None


class AgentCreate(BaseModel):
    name: str
    contact: str
    zone: str
    area: str
    date_of_birth: date | None = None
    latitude: float | None = None
    longitude: float | None = None


class AgentUpdate(BaseModel):
    name: str | None = None
    contact: str | None = None
    zone: str | None = None
    area: str | None = None
    date_of_birth: date | None = None


class AgentActiveRequest(BaseModel):
    is_active: bool


class AgentRead(ORMReadModel):
    id: str
    user_id: str
    unique_id: str
    name: str
    contact: str
    zone: str
    area: str
    date_of_birth: date | None
    latitude: float | None
    longitude: float | None
    is_active: bool
    total_deliveries: int
    rating: float | None
    created_at: datetime
    updated_at: datetime


class NeedyPersonCreate(BaseModel):
    name: str
    street: str
    city: str
    contact: str | None = None
    landmark: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    preferred_food_time: str | None = None
    notes: str | None = None


class NeedyPersonRead(ORMReadModel):
    id: str
    name: str
    contact: str | None
    street: str
    city: str
    landmark: str | None
    latitude: float | None
    longitude: float | None
    preferred_food_time: str | None
    notes: str | None
    registered_by: str | None
    created_at: datetime


class FoodReportCreate(BaseModel):
    food_name: str
    food_type: FoodType
    quantity: int
    pickup_time: datetime
    expiry_time: datetime | None = None
    description: str | None = None
    image_url: str | None = None


class DeliverRequest(BaseModel):
    needy_person_id: str | None = None
    quantity_distributed: int | None = None
    notes: str | None = None


class FoodReportRead(ORMReadModel):
    id: str
    hotel_id: str
    food_name: str
    food_type: FoodType
    quantity: int
    pickup_time: datetime
    expiry_time: datetime | None
    description: str | None
    image_url: str | None
    status: ReportStatus
    assigned_agent_id: str | None
    version: int
    created_at: datetime
    updated_at: datetime
    hotel: HotelSummary | None = None
    urgency: Urgency = Urgency.FLEXIBLE
    hours_until_expiry: float | None = None
    distance_km: float | None = None
    priority_score: float = 0.0
    estimated_earnings: int = 0


class AvailableTaskFilter(BaseModel):
    search: str | None = None
    food_type: FoodType | None = None
    urgency: Urgency | None = None
    max_distance_km: float | None = None
    location: GeoPoint | None = None
    sort: TaskSort = TaskSort.PRIORITY


class DashboardStatsRead(BaseModel):
    role: UserRole
    reports_by_status: dict[str, int] = PydanticField(default_factory=dict)
    total_reports: int = 0
    completed_deliveries: int = 0
    total_food_saved: int = 0
    total_hotels: int | None = None
    total_agents: int | None = None
    total_needy_persons: int | None = None
    active_tasks: int | None = None
    total_deliveries: int | None = None
    rating: float | None = None
