"""Catalogue of bookable services and their prices (ZAR cents)."""

from __future__ import annotations

from dataclasses import dataclass

from .models import BookingType, ConsultType, TrainingLevel, coerce


@dataclass(frozen=True)
class Service:
    id: int
    name: str
    type: BookingType
    description: str
    duration_minutes: int
    price_zar: int
    color_class: str
    icon: str
    available_levels: tuple[TrainingLevel, ...] = ()
    available_consult_types: tuple[ConsultType, ...] = ()
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "price_zar": self.price_zar,
            "price_display": format_price(self.price_zar),
            "color_class": self.color_class,
            "icon": self.icon,
            "available_levels": [level.value for level in self.available_levels],
            "available_consult_types": [kind.value for kind in self.available_consult_types],
            "is_active": self.is_active,
        }


SERVICES: tuple[Service, ...] = (
    Service(
        id=1,
        name="Pet Care",
        type=BookingType.PET_CARE,
        description="Comprehensive pet care including feeding, walking, and basic attention",
        duration_minutes=60,
        price_zar=15000,
        color_class="service-pet-care",
        icon="🐾",
    ),
    Service(
        id=2,
        name="Dog Sitting",
        type=BookingType.DOG_SITTING,
        description="Professional dog sitting service in your home or our facility",
        duration_minutes=480,
        price_zar=80000,
        color_class="service-dog-sitting",
        icon="🏠",
    ),
    Service(
        id=3,
        name="Dog Training",
        type=BookingType.DOG_TRAINING,
        description="Structured training sessions with certified trainers",
        duration_minutes=60,
        price_zar=25000,
        color_class="service-dog-training",
        icon="🎓",
        available_levels=tuple(TrainingLevel),
    ),
    Service(
        id=4,
        name="Private Training",
        type=BookingType.PRIVATE_TRAINING,
        description="One-on-one training for behavioral issues and specialized needs",
        duration_minutes=90,
        price_zar=40000,
        color_class="service-private-training",
        icon="🎯",
    ),
    Service(
        id=5,
        name="Consultation",
        type=BookingType.CONSULT,
        description="Professional consultation with behaviorist or trainer",
        duration_minutes=45,
        price_zar=30000,
        color_class="service-consult",
        icon="💬",
        available_consult_types=tuple(ConsultType),
    ),
)


def get_service_by_type(booking_type: str | BookingType) -> Service:
    kind = coerce(BookingType, booking_type)
    for service in SERVICES:
        if service.type is kind:
            return service
    raise LookupError(f"No service registered for {kind.value}")


def active_services() -> list[Service]:
    return [service for service in SERVICES if service.is_active]


def service_duration(booking_type: str | BookingType) -> int:
    return get_service_by_type(booking_type).duration_minutes


def service_price(booking_type: str | BookingType) -> int:
    return get_service_by_type(booking_type).price_zar


def display_name(booking_type: str | BookingType) -> str:
    return get_service_by_type(booking_type).name


def format_price(price_in_cents: int) -> str:
    return f"R{price_in_cents / 100:.2f}"
