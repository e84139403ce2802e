from __future__ import annotations

import logging
import secrets
import string
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from foodshare.domain.models import (
    AgentCreate,
    AgentUpdate,
    DeliveryAgent,
    GeoPoint,
    Hotel,
    HotelCreate,
    HotelUpdate,
    NeedyPerson,
    NeedyPersonCreate,
    User,
    UserRole,
    now_utc,
)
from foodshare.infra.db import get_engine
from foodshare.services.food_report_service import Actor

logger = logging.getLogger(__name__)

AGENT_ID_PREFIX = "AG-"
AGENT_ID_ALPHABET = string.ascii_uppercase + string.digits
AGENT_ID_LENGTH = 6


class ProfileError(Exception):
    pass


class NotFoundError(ProfileError):
    pass


class ConflictError(ProfileError):
    pass


class PermissionDeniedError(ProfileError):
    pass


def generate_agent_unique_id() -> str:
    suffix = "".join(secrets.choice(AGENT_ID_ALPHABET) for _ in range(AGENT_ID_LENGTH))
    return f"{AGENT_ID_PREFIX}{suffix}"


class ProfileService:
    UNIQUE_ID_ATTEMPTS = 5

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_user(self, session: Session, user_id: str, role: UserRole) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        if user.role != role:
            raise PermissionDeniedError(f"only {role} users can own this profile")
        return user

    def _apply_update(self, row: Any, changes: dict[str, Any]) -> None:
        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_at = now_utc()

    def resolve_actor(self, claims: dict[str, Any]) -> Actor:
        user_id = str(claims["sub"])
        role = UserRole(claims["role"])
        hotel_id = None
        agent_id = None
        with self._session() as session:
            if role == UserRole.HOTEL:
                hotel = session.exec(select(Hotel).where(Hotel.user_id == user_id)).first()
                hotel_id = hotel.id if hotel is not None else None
            elif role == UserRole.AGENT:
                agent = session.exec(select(DeliveryAgent).where(DeliveryAgent.user_id == user_id)).first()
                agent_id = agent.id if agent is not None else None
        return Actor(user_id=user_id, role=role, hotel_id=hotel_id, agent_id=agent_id)

    # Hotels

    def create_hotel(self, user_id: str, payload: HotelCreate) -> Hotel:
        with self._session() as session:
            self._require_user(session, user_id, UserRole.HOTEL)
            hotel = Hotel(user_id=user_id, **payload.model_dump())
            session.add(hotel)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("hotel profile already exists") from exc
            session.refresh(hotel)
        logger.info("hotel profile %s created for user %s", hotel.id, user_id)
        return hotel

    def get_hotel(self, hotel_id: str) -> Hotel:
        with self._session() as session:
            hotel = session.get(Hotel, hotel_id)
            if hotel is None:
                raise NotFoundError("hotel not found")
            return hotel

    def get_hotel_for_user(self, user_id: str) -> Hotel:
        with self._session() as session:
            hotel = session.exec(select(Hotel).where(Hotel.user_id == user_id)).first()
            if hotel is None:
                raise NotFoundError("hotel profile not found")
            return hotel

    def list_hotels(self) -> list[Hotel]:
        with self._session() as session:
            return list(session.exec(select(Hotel).order_by(col(Hotel.name))).all())

    def update_hotel(self, user_id: str, payload: HotelUpdate) -> Hotel:
        with self._session() as session:
            hotel = session.exec(select(Hotel).where(Hotel.user_id == user_id)).first()
            if hotel is None:
                raise NotFoundError("hotel profile not found")
            self._apply_update(hotel, payload.model_dump(exclude_unset=True))
            session.add(hotel)
            session.commit()
            session.refresh(hotel)
            return hotel

    # Delivery agents

    def create_agent(self, user_id: str, payload: AgentCreate) -> DeliveryAgent:
        with self._session() as session:
            self._require_user(session, user_id, UserRole.AGENT)
            existing = session.exec(select(DeliveryAgent).where(DeliveryAgent.user_id == user_id)).first()
            if existing is not None:
                raise ConflictError("agent profile already exists")

        for _ in range(self.UNIQUE_ID_ATTEMPTS):
            agent = DeliveryAgent(
                user_id=user_id,
                unique_id=generate_agent_unique_id(),
                is_active=True,
                **payload.model_dump(),
            )
            with self._session() as session:
                session.add(agent)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.warning("agent unique id collision for user %s, retrying", user_id)
                    continue
                session.refresh(agent)
            logger.info("agent profile %s (%s) created for user %s", agent.id, agent.unique_id, user_id)
            return agent
        raise ConflictError("could not allocate a unique agent id")

    def get_agent(self, agent_id: str) -> DeliveryAgent:
        with self._session() as session:
            agent = session.get(DeliveryAgent, agent_id)
            if agent is None:
                raise NotFoundError("delivery agent not found")
            return agent

    def get_agent_for_user(self, user_id: str) -> DeliveryAgent:
        with self._session() as session:
            agent = session.exec(select(DeliveryAgent).where(DeliveryAgent.user_id == user_id)).first()
            if agent is None:
                raise NotFoundError("agent profile not found")
            return agent

    def list_agents(self, zone: str | None = None, active_only: bool = False) -> list[DeliveryAgent]:
        with self._session() as session:
            statement = select(DeliveryAgent)
            if zone:
                statement = statement.where(DeliveryAgent.zone == zone)
            if active_only:
                statement = statement.where(col(DeliveryAgent.is_active).is_(True))
            return list(session.exec(statement.order_by(col(DeliveryAgent.name))).all())

    def update_agent(self, user_id: str, payload: AgentUpdate) -> DeliveryAgent:
        with self._session() as session:
            agent = session.exec(select(DeliveryAgent).where(DeliveryAgent.user_id == user_id)).first()
            if agent is None:
                raise NotFoundError("agent profile not found")
            self._apply_update(agent, payload.model_dump(exclude_unset=True))
            session.add(agent)
            session.commit()
            session.refresh(agent)
            return agent

    def set_agent_active(self, actor: Actor, agent_id: str, is_active: bool) -> DeliveryAgent:
        if actor.role != UserRole.ADMIN and actor.agent_id != agent_id:
            raise PermissionDeniedError("only the agent or an admin can change availability")
        with self._session() as session:
            agent = session.get(DeliveryAgent, agent_id)
            if agent is None:
                raise NotFoundError("delivery agent not found")
            self._apply_update(agent, {"is_active": is_active})
            session.add(agent)
            session.commit()
            session.refresh(agent)
        logger.info("agent %s active=%s set by %s", agent_id, is_active, actor.user_id)
        return agent

    def update_agent_location(self, user_id: str, location: GeoPoint) -> DeliveryAgent:
        with self._session() as session:
            agent = session.exec(select(DeliveryAgent).where(DeliveryAgent.user_id == user_id)).first()
            if agent is None:
                raise NotFoundError("agent profile not found")
            self._apply_update(agent, {"latitude": location.latitude, "longitude": location.longitude})
            session.add(agent)
            session.commit()
            session.refresh(agent)
            return agent

    # Needy persons

    def register_needy_person(self, registered_by: str, payload: NeedyPersonCreate) -> NeedyPerson:
        person = NeedyPerson(registered_by=registered_by, **payload.model_dump())
        with self._session() as session:
            session.add(person)
            session.commit()
            session.refresh(person)
        return person

    def get_needy_person(self, person_id: str) -> NeedyPerson:
        with self._session() as session:
            person = session.get(NeedyPerson, person_id)
            if person is None:
                raise NotFoundError("needy person not found")
            return person

    def list_needy_persons(self, city: str | None = None) -> list[NeedyPerson]:
        with self._session() as session:
            statement = select(NeedyPerson)
            if city:
                statement = statement.where(NeedyPerson.city == city)
            return list(session.exec(statement.order_by(col(NeedyPerson.created_at).desc())).all())
