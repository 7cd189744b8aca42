"""Closed vocabularies used across the platform."""

from __future__ import annotations

from enum import Enum
from typing import TypeVar

from .errors import ValidationError


class UserRole(str, Enum):
    ADMIN = "admin"
    TRAINER = "trainer"
    PARENT = "parent"
    BEHAVIORIST = "behaviorist"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingType(str, Enum):
    PET_CARE = "pet_care"
    DOG_SITTING = "dog_sitting"
    DOG_TRAINING = "dog_training"
    PRIVATE_TRAINING = "private_training"
    CONSULT = "consult"


class TrainingLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class ConsultType(str, Enum):
    BEHAVIORAL = "behavioral"
    TRAINING = "training"
    GENERAL = "general"


E = TypeVar("E", bound=Enum)


def coerce(enum_cls: type[E], value: str | E) -> E:
    """Return ``value`` as a member of ``enum_cls`` or raise ``ValidationError``."""

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        label = enum_cls.__name__
        raise ValidationError(f"Invalid {label} '{value}' (expected one of: {allowed})") from None
