"""Read models shared with the salon operations services.

Franchise, branch, barber and service records are owned by the operations
stack; the loyalty service only reads them, except for the reward summary it
attaches to a queue ticket when a reward is applied.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, JSON, Numeric, String, func

from stampcard_api.db.base import Base


class QueueTicketStatus(str, Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    ARRIVED = "arrived"
    IN_SERVICE = "in_service"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class SalonService(Base):
    __tablename__ = "salon_services"

    service_id = Column(String(64), primary_key=True)
    franchise_id = Column(String(64), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    currency = Column(String(3), nullable=False, default="EUR", server_default="EUR")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Barber(Base):
    __tablename__ = "barbers"

    barber_id = Column(String(128), primary_key=True)
    franchise_id = Column(String(64), nullable=False)
    branch_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class QueueTicket(Base):
    __tablename__ = "queue_tickets"

    queue_id = Column(String(64), primary_key=True)
    franchise_id = Column(String(64), nullable=False)
    branch_id = Column(String(64), nullable=False)
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=QueueTicketStatus.WAITING.value)
    service_id = Column(String(64), nullable=True)
    barber_id = Column(String(128), nullable=True)
    loyalty_reward = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["Barber", "QueueTicket", "QueueTicketStatus", "SalonService"]
