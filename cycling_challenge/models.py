import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Index
from sqlalchemy.orm import declarative_base, Mapped, mapped_column, relationship

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Devuelve dt con tz=UTC (si viene naive le pone UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ChallengeType(str, enum.Enum):
    DISTANCE = "Distance"
    CLIMBING = "Climbing"
    AVERAGE_SPEED = "AverageSpeed"


class ChallengeStatus(str, enum.Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    garmin_user_id: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    access_token: Mapped[str] = mapped_column(String, default="")
    access_token_secret: Mapped[str] = mapped_column(String, default="")
    token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Challenge(Base):
    __tablename__ = "challenges"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    type: Mapped[ChallengeType] = mapped_column(Enum(ChallengeType, values_callable=lambda e: [m.value for m in e]))
    status: Mapped[ChallengeStatus] = mapped_column(
        Enum(ChallengeStatus, values_callable=lambda e: [m.value for m in e]),
        default=ChallengeStatus.PENDING,
        index=True,
    )
    target_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    # ventana mensual en UTC, ambos extremos inclusivos
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    creator_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    opponent_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    creator: Mapped[User] = relationship(foreign_keys=[creator_id], lazy="joined")
    opponent: Mapped[User] = relationship(foreign_keys=[opponent_id], lazy="joined")


class Activity(Base):
    __tablename__ = "activities"
    __table_args__ = (Index("ix_activities_user_date", "user_id", "activity_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # id de Garmin; las copias por reto llevan "<id>_<challenge_id>"
    garmin_activity_id: Mapped[str] = mapped_column(String(50), unique=True)
    activity_type: Mapped[str] = mapped_column(String(50))
    distance: Mapped[float] = mapped_column(Float, default=0.0)  # km
    elevation_gain: Mapped[float | None] = mapped_column(Float, nullable=True)  # m
    average_speed: Mapped[float | None] = mapped_column(Float, nullable=True)  # km/h
    activity_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    challenge_id: Mapped[int | None] = mapped_column(
        ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True
    )
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
