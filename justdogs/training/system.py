"""Core orchestration logic for the Just Dogs training platform."""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
import secrets
from typing import Any, Callable, Iterable, Mapping, Sequence

from . import services
from .assessment import dog_fields_from_assessment, recommend, validate_answers
from .calendar_view import (
    ALL,
    CalendarEvent,
    DayCell,
    build_calendar_events,
    month_view,
    validate_status_filter,
)
from .errors import AuthError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from .lifecycle import (
    check_booking_transition,
    check_session_transition,
    parse_timestamp,
    validate_booking_details,
    validate_rating,
    validate_time_range,
)
from .messaging import MessageHub, Subscription, is_visible_to
from .models import BookingStatus, SessionStatus, UserRole, coerce
from .search import (
    BOOKING_FIELDS,
    DOG_FIELDS,
    MESSAGE_FIELDS,
    SESSION_FIELDS,
    USER_FIELDS,
    filter_records,
)
from .store import Clock, RecordStore, utc_now

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
CONFIRMATION_MESSAGE = "Please check your email to confirm your account before signing in."

ROLE_RANK: dict[UserRole, int] = {
    UserRole.PARENT: 1,
    UserRole.TRAINER: 2,
    UserRole.BEHAVIORIST: 2,
    UserRole.ADMIN: 3,
}

STAFF_ROLES = (UserRole.TRAINER.value, UserRole.BEHAVIORIST.value)

DEMO_USERS: tuple[dict, ...] = (
    {"email": "admin@justdogs.co.za", "full_name": "Admin User", "role": "admin",
     "phone": "+27 82 123 4567", "password": "admin123"},
    {"email": "trainer@justdogs.co.za", "full_name": "Trainer User", "role": "trainer",
     "phone": "+27 83 987 6543", "password": "trainer123"},
    {"email": "parent@justdogs.co.za", "full_name": "Parent User", "role": "parent",
     "phone": "+27 84 555 1234", "password": "parent123"},
    {"email": "behaviorist@justdogs.co.za", "full_name": "Behaviorist User", "role": "behaviorist",
     "phone": "+27 85 777 8888", "password": "behaviorist123"},
)

PROFILE_FIELDS = frozenset({"full_name", "phone", "avatar_url"})
DOG_UPDATE_FIELDS = frozenset(
    {
        "name",
        "breed",
        "age",
        "weight",
        "owner_id",
        "medical_notes",
        "behavioral_notes",
        "vaccine_records",
        "preferences",
        "emergency_contact",
        "photo_url",
    }
)
BOOKING_UPDATE_FIELDS = frozenset(
    {
        "dog_id",
        "trainer_id",
        "booking_type",
        "training_level",
        "consult_type",
        "start_time",
        "end_time",
        "special_instructions",
        "location",
    }
)
SESSION_UPDATE_FIELDS = frozenset({"trainer_id", "start_time", "end_time", "notes", "photos"})


def has_permission(user_role: str | UserRole, required_role: str | UserRole) -> bool:
    return ROLE_RANK[coerce(UserRole, user_role)] >= ROLE_RANK[coerce(UserRole, required_role)]


def can_access_resource(user_role: str | UserRole, resource_owner_id: str, current_user_id: str) -> bool:
    if coerce(UserRole, user_role) is UserRole.ADMIN:
        return True
    return resource_owner_id == current_user_id


def as_utc(moment: dt.datetime) -> dt.datetime:
    """Treat naive timestamps as UTC so they compare with the clock."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=dt.timezone.utc)
    return moment.astimezone(dt.timezone.utc)


def _reject_unknown(changes: Mapping[str, Any], allowed: Iterable[str], label: str) -> None:
    unknown = set(changes) - set(allowed)
    if unknown:
        raise ValidationError(f"Cannot update {label} field(s): {', '.join(sorted(unknown))}")


def _require_text(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


class TrainingSystem:
    """High level façade that exposes application level behaviours."""

    def __init__(
        self,
        store: RecordStore | None = None,
        *,
        hub: MessageHub | None = None,
        require_confirmation: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store or RecordStore.open(clock=clock)
        self.hub = hub or MessageHub()
        self.require_confirmation = require_confirmation
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _hash_password(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), 390000)
        return f"pbkdf2_sha256${salt}${digest.hex()}"

    def _verify_password(self, stored: str | None, provided: str) -> bool:
        if not stored:
            return False
        algorithm, salt, hex_digest = stored.split("$")
        candidate = hashlib.pbkdf2_hmac("sha256", provided.encode(), salt.encode(), 390000)
        return secrets.compare_digest(candidate.hex(), hex_digest)

    @staticmethod
    def _public(user: dict) -> dict:
        user = dict(user)
        user.pop("password_hash", None)
        return user

    def _now(self) -> dt.datetime:
        return self._clock()

    def _open_session(self, user: dict) -> dict:
        token = secrets.token_hex(32)
        self.store.auth_sessions.create({"token": token, "user_id": user["id"]})
        return {"token": token, "user_id": user["id"]}

    def _scope_for(self, user_id: str | None) -> dict:
        """Return the record filter matching what ``user_id`` may see."""

        if user_id is None:
            return {}
        user = self.get_user(user_id)
        scopes = {
            UserRole.PARENT: {"parent_id": user_id},
            UserRole.TRAINER: {"trainer_id": user_id},
            UserRole.BEHAVIORIST: {},
            UserRole.ADMIN: {},
        }
        return scopes[coerce(UserRole, user["role"])]

    def _dog_names(self) -> dict[int, str]:
        return {dog["id"]: dog["name"] for dog in self.store.dogs.get_all()}

    # ------------------------------------------------------------------
    # Authentication & users
    # ------------------------------------------------------------------
    def sign_up(self, *, email: str, password: str, full_name: str, role: str | UserRole) -> dict:
        email = _require_text(email, "email").lower()
        if "@" not in email:
            raise ValidationError("email must be a valid address")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        role = coerce(UserRole, role)
        if self.store.users.find(email=email):
            raise AuthError("A user with this email already exists")
        user = self.store.users.create(
            {
                "email": email,
                "password_hash": self._hash_password(password),
                "full_name": _require_text(full_name, "full_name"),
                "role": role,
                "confirmed": not self.require_confirmation,
            }
        )
        logger.info("Registered %s user %s", role.value, user["id"])
        if self.require_confirmation:
            return {"user": self._public(user), "session": None, "message": CONFIRMATION_MESSAGE}
        return {"user": self._public(user), "session": self._open_session(user)}

    def confirm_user(self, user_id: str) -> dict:
        self.get_user(user_id)
        return self._public(self.store.users.update(user_id, {"confirmed": True}))

    def sign_in(self, *, email: str, password: str) -> dict:
        rows = self.store.users.find(email=(email or "").strip().lower())
        if not rows or not self._verify_password(rows[0]["password_hash"], password or ""):
            raise AuthError("Invalid email or password")
        user = rows[0]
        if not user["confirmed"]:
            raise AuthError("Please confirm your email before signing in")
        logger.info("User %s signed in", user["id"])
        return {"user": self._public(user), "session": self._open_session(user)}

    def sign_out(self, token: str) -> None:
        for row in self.store.auth_sessions.find(token=token):
            self.store.auth_sessions.delete(row["id"])

    def get_current_user(self, token: str | None) -> dict | None:
        if not token:
            return None
        rows = self.store.auth_sessions.find(token=token)
        if not rows:
            return None
        user = self.store.users.get_by_id(rows[0]["user_id"])
        return self._public(user) if user else None

    def require_role(self, token: str | None, allowed: Sequence[str | UserRole]) -> dict:
        user = self.get_current_user(token)
        if user is None:
            raise AuthError("Not signed in")
        if user["role"] not in {coerce(UserRole, role).value for role in allowed}:
            raise AuthorizationError("User does not have permission to perform this action")
        return user

    def update_user_profile(self, user_id: str, **changes: Any) -> dict:
        _reject_unknown(changes, PROFILE_FIELDS, "profile")
        if "full_name" in changes:
            changes["full_name"] = _require_text(changes["full_name"], "full_name")
        user = self.store.users.update(user_id, changes)
        if user is None:
            raise NotFoundError("User not found")
        return self._public(user)

    def get_user(self, user_id: str) -> dict:
        user = self.store.users.get_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return self._public(user)

    def list_users(self, *, role: str | UserRole | None = None) -> list[dict]:
        rows = self.store.users.find(role=coerce(UserRole, role)) if role else self.store.users.get_all()
        return [self._public(row) for row in rows]

    def search_users(self, term: str, *, role: str | UserRole | None = None) -> list[dict]:
        return filter_records(self.list_users(role=role), term, USER_FIELDS)

    def seed_demo_users(self) -> list[dict]:
        """Create the demo accounts that are missing and return all of them."""

        seeded = []
        for demo in DEMO_USERS:
            rows = self.store.users.find(email=demo["email"])
            if rows:
                seeded.append(self._public(rows[0]))
                continue
            user = self.store.users.create(
                {
                    "email": demo["email"],
                    "password_hash": self._hash_password(demo["password"]),
                    "full_name": demo["full_name"],
                    "role": demo["role"],
                    "phone": demo["phone"],
                    "confirmed": True,
                }
            )
            seeded.append(self._public(user))
        return seeded

    # ------------------------------------------------------------------
    # Dogs
    # ------------------------------------------------------------------
    def _validate_dog(self, fields: dict) -> dict:
        if "name" in fields:
            fields["name"] = _require_text(fields["name"], "name")
        if "breed" in fields:
            fields["breed"] = _require_text(fields["breed"], "breed")
        if "age" in fields:
            age = fields["age"]
            if isinstance(age, bool) or not isinstance(age, (int, float)) or age < 0:
                raise ValidationError("age must be a non-negative number")
        if fields.get("weight") is not None:
            weight = fields["weight"]
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or weight <= 0:
                raise ValidationError("weight must be a positive number")
        contact = fields.get("emergency_contact")
        if contact is not None:
            if not isinstance(contact, Mapping) or not contact.get("name") or not contact.get("phone"):
                raise ValidationError("emergency_contact needs at least a name and phone")
            fields["emergency_contact"] = {
                "name": contact["name"],
                "phone": contact["phone"],
                "relationship": contact.get("relationship", ""),
            }
        if "owner_id" in fields:
            owner = self.get_user(fields["owner_id"])
            if owner["role"] != UserRole.PARENT.value:
                raise ValidationError("Dogs must be owned by a parent")
        return fields

    def create_dog(
        self,
        *,
        owner_id: str,
        name: str,
        breed: str,
        age: float,
        weight: float | None = None,
        medical_notes: str | None = None,
        behavioral_notes: str | None = None,
        vaccine_records: str | None = None,
        preferences: str | None = None,
        emergency_contact: Mapping[str, str] | None = None,
        photo_url: str | None = None,
    ) -> dict:
        fields = self._validate_dog(
            {
                "owner_id": owner_id,
                "name": name,
                "breed": breed,
                "age": age,
                "weight": weight,
                "medical_notes": medical_notes,
                "behavioral_notes": behavioral_notes,
                "vaccine_records": vaccine_records,
                "preferences": preferences,
                "emergency_contact": emergency_contact,
                "photo_url": photo_url,
            }
        )
        return self.store.dogs.create(fields)

    def get_dog(self, dog_id: int) -> dict:
        dog = self.store.dogs.get_by_id(dog_id)
        if not dog:
            raise NotFoundError("Dog not found")
        return dog

    def list_dogs(self, *, owner_id: str | None = None) -> list[dict]:
        if owner_id is None:
            return self.store.dogs.get_all()
        return self.store.dogs.find(owner_id=owner_id)

    def update_dog(self, dog_id: int, **changes: Any) -> dict:
        _reject_unknown(changes, DOG_UPDATE_FIELDS, "dog")
        self.get_dog(dog_id)
        dog = self.store.dogs.update(dog_id, self._validate_dog(dict(changes)))
        if dog is None:
            raise NotFoundError("Dog not found")
        return dog

    def delete_dog(self, dog_id: int) -> None:
        if not self.store.dogs.delete(dog_id):
            raise NotFoundError("Dog not found")

    def search_dogs(self, term: str, *, owner_id: str | None = None) -> list[dict]:
        scope = {"owner_id": owner_id} if owner_id is not None else {}
        return self.store.dogs.search(term, DOG_FIELDS, **scope)

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    def _check_staff(self, trainer_id: str) -> dict:
        trainer = self.get_user(trainer_id)
        if trainer["role"] not in STAFF_ROLES:
            raise ValidationError("Bookings must be assigned to a trainer or behaviorist")
        return trainer

    def _check_parent_of(self, dog: dict, parent_id: str | None) -> str:
        if parent_id is None:
            return dog["owner_id"]
        if dog["owner_id"] != parent_id:
            raise ValidationError("Dog does not belong to this parent")
        return parent_id

    def create_booking(
        self,
        *,
        dog_id: int,
        trainer_id: str,
        booking_type: str,
        start_time: str,
        end_time: str | None = None,
        parent_id: str | None = None,
        training_level: str | None = None,
        consult_type: str | None = None,
        special_instructions: str | None = None,
        location: str | None = None,
    ) -> dict:
        dog = self.get_dog(dog_id)
        parent_id = self._check_parent_of(dog, parent_id)
        self._check_staff(trainer_id)
        details = validate_booking_details(booking_type, training_level, consult_type)
        if end_time is None:
            start_dt = parse_timestamp(start_time, "start_time")
            end_time = start_dt + dt.timedelta(minutes=services.service_duration(details["booking_type"]))
        start_dt, end_dt = validate_time_range(start_time, end_time)
        return self.store.bookings.create(
            {
                **details,
                "dog_id": dog_id,
                "trainer_id": trainer_id,
                "parent_id": parent_id,
                "status": BookingStatus.PENDING,
                "start_time": start_dt.isoformat(),
                "end_time": end_dt.isoformat(),
                "special_instructions": special_instructions,
                "location": location,
            }
        )

    def get_booking(self, booking_id: int) -> dict:
        row = self.store.bookings.get_by_id(booking_id)
        if not row:
            raise NotFoundError("Booking not found")
        return row

    def list_bookings(self, *, user_id: str | None = None, status: str | None = None) -> list[dict]:
        scope = self._scope_for(user_id)
        if status:
            scope["status"] = coerce(BookingStatus, status)
        return self.store.bookings.find(**scope)

    def update_booking(self, booking_id: int, *, expected_version: int | None = None, **changes: Any) -> dict:
        if "status" in changes:
            raise ValidationError("Use change_booking_status to change a booking's status")
        _reject_unknown(changes, BOOKING_UPDATE_FIELDS, "booking")
        booking = self.get_booking(booking_id)
        merged = {**booking, **changes}
        if "dog_id" in changes:
            self._check_parent_of(self.get_dog(merged["dog_id"]), booking["parent_id"])
        if "trainer_id" in changes:
            self._check_staff(merged["trainer_id"])
        details = validate_booking_details(
            merged["booking_type"], merged.get("training_level"), merged.get("consult_type")
        )
        start_dt, end_dt = validate_time_range(merged["start_time"], merged["end_time"])
        changes.update(details)
        changes["start_time"] = start_dt.isoformat()
        changes["end_time"] = end_dt.isoformat()
        updated = self.store.bookings.update(booking_id, changes, expected_version=expected_version)
        if updated is None:
            raise NotFoundError("Booking not found")
        return updated

    def change_booking_status(
        self,
        booking_id: int,
        status: str | BookingStatus,
        *,
        expected_version: int | None = None,
    ) -> dict:
        """Move a booking to ``status``.

        Setting the status a booking already has is a no-op and leaves
        ``updated_at`` untouched. Illegal moves raise ``InvalidTransitionError``.
        """

        booking = self.get_booking(booking_id)
        if expected_version is not None and booking["version"] != expected_version:
            raise ConflictError(f"Booking {booking_id} was modified (version {booking['version']})")
        if not check_booking_transition(booking["status"], status):
            return booking
        target = coerce(BookingStatus, status)
        updated = self.store.bookings.update(
            booking_id, {"status": target}, expected_version=booking["version"]
        )
        if updated is None:
            raise NotFoundError("Booking not found")
        logger.info("Booking %s: %s -> %s", booking_id, booking["status"], target.value)
        return updated

    def delete_booking(self, booking_id: int) -> None:
        if not self.store.bookings.delete(booking_id):
            raise NotFoundError("Booking not found")

    def search_bookings(self, term: str, *, user_id: str | None = None, status_filter: str = ALL) -> list[dict]:
        status_filter = validate_status_filter(status_filter)
        scope = self._scope_for(user_id)
        if status_filter != ALL:
            if status_filter not in {status.value for status in BookingStatus}:
                return []
            scope["status"] = status_filter
        return self.store.bookings.search(term, BOOKING_FIELDS, **scope)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def create_session(
        self,
        *,
        dog_id: int,
        trainer_id: str,
        start_time: str,
        end_time: str,
        parent_id: str | None = None,
        booking_id: int | None = None,
        notes: str = "",
        photos: Sequence[str] | None = None,
    ) -> dict:
        dog = self.get_dog(dog_id)
        parent_id = self._check_parent_of(dog, parent_id)
        self._check_staff(trainer_id)
        if booking_id is not None:
            booking = self.get_booking(booking_id)
            if booking["dog_id"] != dog_id:
                raise ValidationError("Session dog does not match the booking")
        start_dt, end_dt = validate_time_range(start_time, end_time)
        return self.store.sessions.create(
            {
                "booking_id": booking_id,
                "dog_id": dog_id,
                "trainer_id": trainer_id,
                "parent_id": parent_id,
                "status": SessionStatus.SCHEDULED,
                "start_time": start_dt.isoformat(),
                "end_time": end_dt.isoformat(),
                "notes": notes or "",
                "photos": list(photos) if photos else None,
            }
        )

    def start_session_from_booking(self, booking_id: int, *, notes: str = "") -> dict:
        """Realise a confirmed booking into a scheduled session."""

        booking = self.get_booking(booking_id)
        if booking["status"] != BookingStatus.CONFIRMED.value:
            raise ValidationError("Only confirmed bookings can be turned into sessions")
        if self.store.sessions.find(booking_id=booking_id):
            raise ValidationError("Booking already has a session")
        return self.create_session(
            dog_id=booking["dog_id"],
            trainer_id=booking["trainer_id"],
            parent_id=booking["parent_id"],
            booking_id=booking_id,
            start_time=booking["start_time"],
            end_time=booking["end_time"],
            notes=notes,
        )

    def get_session(self, session_id: int) -> dict:
        row = self.store.sessions.get_by_id(session_id)
        if not row:
            raise NotFoundError("Session not found")
        return row

    def list_sessions(self, *, user_id: str | None = None, status: str | None = None) -> list[dict]:
        scope = self._scope_for(user_id)
        if status:
            scope["status"] = coerce(SessionStatus, status)
        return self.store.sessions.find(**scope)

    def update_session(self, session_id: int, *, expected_version: int | None = None, **changes: Any) -> dict:
        if "status" in changes:
            raise ValidationError("Use change_session_status to change a session's status")
        _reject_unknown(changes, SESSION_UPDATE_FIELDS, "session")
        session = self.get_session(session_id)
        merged = {**session, **changes}
        if "trainer_id" in changes:
            self._check_staff(merged["trainer_id"])
        start_dt, end_dt = validate_time_range(merged["start_time"], merged["end_time"])
        changes["start_time"] = start_dt.isoformat()
        changes["end_time"] = end_dt.isoformat()
        if "photos" in changes and changes["photos"] is not None:
            changes["photos"] = list(changes["photos"])
        updated = self.store.sessions.update(session_id, changes, expected_version=expected_version)
        if updated is None:
            raise NotFoundError("Session not found")
        return updated

    def change_session_status(
        self,
        session_id: int,
        status: str | SessionStatus,
        *,
        expected_version: int | None = None,
    ) -> dict:
        session = self.get_session(session_id)
        if expected_version is not None and session["version"] != expected_version:
            raise ConflictError(f"Session {session_id} was modified (version {session['version']})")
        if not check_session_transition(session["status"], status):
            return session
        target = coerce(SessionStatus, status)
        updated = self.store.sessions.update(
            session_id, {"status": target}, expected_version=session["version"]
        )
        if updated is None:
            raise NotFoundError("Session not found")
        logger.info("Session %s: %s -> %s", session_id, session["status"], target.value)
        return updated

    def record_session_feedback(
        self,
        session_id: int,
        *,
        notes: str | None = None,
        progress_rating: int | None = None,
        behavior_rating: int | None = None,
    ) -> dict:
        changes: dict[str, Any] = {}
        if notes is not None:
            changes["notes"] = notes
        if progress_rating is not None:
            changes["progress_rating"] = validate_rating(progress_rating, "progress_rating")
        if behavior_rating is not None:
            changes["behavior_rating"] = validate_rating(behavior_rating, "behavior_rating")
        self.get_session(session_id)
        if not changes:
            raise ValidationError("Feedback needs notes or at least one rating")
        updated = self.store.sessions.update(session_id, changes)
        if updated is None:
            raise NotFoundError("Session not found")
        return updated

    def delete_session(self, session_id: int) -> None:
        if not self.store.sessions.delete(session_id):
            raise NotFoundError("Session not found")

    def search_sessions(self, term: str, *, user_id: str | None = None, status_filter: str = ALL) -> list[dict]:
        status_filter = validate_status_filter(status_filter)
        scope = self._scope_for(user_id)
        if status_filter != ALL:
            if status_filter not in {status.value for status in SessionStatus}:
                return []
            scope["status"] = status_filter
        return self.store.sessions.search(term, SESSION_FIELDS, **scope)

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------
    def send_message(
        self,
        *,
        sender_id: str,
        subject: str,
        content: str,
        recipient_id: str | None = None,
        is_announcement: bool = False,
        target_roles: Sequence[str | UserRole] | None = None,
    ) -> dict:
        self.get_user(sender_id)
        roles: list[str] = []
        if is_announcement:
            if recipient_id is not None:
                raise ValidationError("Announcements cannot have a recipient")
            for role in target_roles or ():
                value = coerce(UserRole, role).value
                if value not in roles:
                    roles.append(value)
        else:
            if recipient_id is None:
                raise ValidationError("Direct messages need a recipient")
            if target_roles:
                raise ValidationError("Only announcements can target roles")
            self.get_user(recipient_id)
        message = self.store.messages.create(
            {
                "sender_id": sender_id,
                "recipient_id": recipient_id,
                "subject": _require_text(subject, "subject"),
                "content": _require_text(content, "content"),
                "is_announcement": is_announcement,
                "target_roles": roles,
            }
        )
        self.hub.publish(message)
        return message

    def get_message(self, message_id: str) -> dict:
        message = self.store.messages.get_by_id(message_id)
        if not message:
            raise NotFoundError("Message not found")
        return message

    def _visible_messages(self, user_id: str) -> list[dict]:
        user = self.get_user(user_id)
        return [
            message
            for message in self.store.messages.get_all()
            if is_visible_to(message, user_id, user["role"])
        ]

    def get_messages_by_user(self, user_id: str) -> list[dict]:
        """Return the user's direct messages and visible announcements, newest first."""

        return sorted(
            self._visible_messages(user_id),
            key=lambda message: (message["created_at"], message["id"]),
            reverse=True,
        )

    def get_messages_by_sender(self, sender_id: str) -> list[dict]:
        return self.store.messages.find(sender_id=sender_id)

    def get_unread_messages(self, user_id: str) -> list[dict]:
        return [
            message
            for message in self.get_messages_by_user(user_id)
            if message["sender_id"] != user_id and not message["read_at"]
        ]

    def mark_message_as_read(self, message_id: str, *, reader_id: str | None = None) -> dict:
        """Stamp ``read_at`` the first time a message is read.

        Later calls keep the original timestamp.
        """

        message = self.get_message(message_id)
        if reader_id is not None:
            reader = self.get_user(reader_id)
            if message["is_announcement"]:
                allowed = is_visible_to(message, reader_id, reader["role"])
            else:
                allowed = message["recipient_id"] == reader_id
            if not allowed:
                raise AuthorizationError("Only the recipient can mark this message as read")
        if message["read_at"]:
            return message
        updated = self.store.messages.update(
            message_id, {"read_at": self._now().isoformat(timespec="microseconds")}
        )
        if updated is None:
            raise NotFoundError("Message not found")
        return updated

    def delete_message(self, message_id: str) -> None:
        if not self.store.messages.delete(message_id):
            raise NotFoundError("Message not found")

    def search_messages(self, term: str, *, user_id: str | None = None) -> list[dict]:
        if user_id is None:
            return self.store.messages.search(term, MESSAGE_FIELDS)
        return filter_records(self._visible_messages(user_id), term, MESSAGE_FIELDS)

    def subscribe_to_messages(self, user_id: str, on_message: Callable[[dict], None]) -> Subscription:
        user = self.get_user(user_id)
        return self.hub.subscribe(user_id, user["role"], on_message)

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------
    def calendar_events(self, *, user_id: str | None = None, status_filter: str = ALL) -> list[CalendarEvent]:
        scope = self._scope_for(user_id)
        return build_calendar_events(
            self.store.bookings.find(**scope),
            self.store.sessions.find(**scope),
            status_filter,
            dog_names=self._dog_names(),
        )

    def calendar_month(
        self,
        year: int,
        month: int,
        *,
        user_id: str | None = None,
        status_filter: str = ALL,
        max_per_day: int = 3,
    ) -> list[list[DayCell]]:
        events = self.calendar_events(user_id=user_id, status_filter=status_filter)
        return month_view(year, month, events, max_per_day=max_per_day)

    # ------------------------------------------------------------------
    # Assessments
    # ------------------------------------------------------------------
    def submit_assessment(self, answers: Mapping[str, Any]) -> dict:
        validate_answers(answers)
        result = recommend(answers)
        code = f"{secrets.randbelow(900000) + 100000}"
        while self.store.assessments.find(code=code):
            code = f"{secrets.randbelow(900000) + 100000}"
        self.store.assessments.create({"code": code, "answers": dict(answers), "result": result})
        return {"code": code, "result": result}

    def get_assessment(self, code: str) -> dict:
        rows = self.store.assessments.find(code=(code or "").strip())
        if not rows:
            raise NotFoundError("Invalid assessment code")
        return rows[0]

    def redeem_assessment(self, code: str, *, owner_id: str, dog_name: str) -> dict:
        """Create a dog profile from an assessment and discard the assessment."""

        assessment = self.get_assessment(code)
        fields = dog_fields_from_assessment(
            assessment["result"], name=_require_text(dog_name, "dog_name"), owner_id=owner_id
        )
        dog = self.create_dog(**fields)
        self.store.assessments.delete(assessment["id"])
        return dog

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------
    def dashboard(self, user_id: str, *, today: dt.date | None = None) -> dict:
        user = self.get_user(user_id)
        now = self._now()
        today = today or now.date()
        builders = {
            UserRole.ADMIN: self._admin_dashboard,
            UserRole.TRAINER: self._trainer_dashboard,
            UserRole.BEHAVIORIST: self._trainer_dashboard,
            UserRole.PARENT: self._parent_dashboard,
        }
        stats = builders[coerce(UserRole, user["role"])](user, today, now)
        return {"role": user["role"], "date": today.isoformat(), **stats}

    @staticmethod
    def _starts_on(record: Mapping, day: dt.date) -> bool:
        return parse_timestamp(record["start_time"]).date() == day

    @staticmethod
    def _starts_after(record: Mapping, now: dt.datetime) -> bool:
        return as_utc(parse_timestamp(record["start_time"])) > as_utc(now)

    def _admin_dashboard(self, user: dict, today: dt.date, now: dt.datetime) -> dict:
        bookings = self.store.bookings.get_all()
        revenue = sum(
            services.service_price(booking["booking_type"])
            for booking in bookings
            if booking["status"] == BookingStatus.COMPLETED.value
            and parse_timestamp(booking["start_time"]).date().replace(day=1) == today.replace(day=1)
        )
        return {
            "total_bookings_today": sum(1 for booking in bookings if self._starts_on(booking, today)),
            "total_dogs": len(self.store.dogs.get_all()),
            "total_trainers": len(self.store.users.find(role=UserRole.TRAINER)),
            "total_revenue_month": revenue,
            "pending_bookings": sum(
                1 for booking in bookings if booking["status"] == BookingStatus.PENDING.value
            ),
        }

    def _trainer_dashboard(self, user: dict, today: dt.date, now: dt.datetime) -> dict:
        bookings = self.store.bookings.find(trainer_id=user["id"])
        sessions = self.store.sessions.find(trainer_id=user["id"])
        closed = (BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value)
        upcoming = sorted(
            (
                booking
                for booking in bookings
                if booking["status"] not in closed and self._starts_after(booking, now)
            ),
            key=lambda booking: as_utc(parse_timestamp(booking["start_time"])),
        )
        return {
            "today_sessions": sum(1 for session in sessions if self._starts_on(session, today)),
            "total_dogs_assigned": len({row["dog_id"] for row in [*bookings, *sessions]}),
            "unread_messages": len(self.get_unread_messages(user["id"])),
            "upcoming_sessions": upcoming[:5],
        }

    def _parent_dashboard(self, user: dict, today: dt.date, now: dt.datetime) -> dict:
        sessions = self.store.sessions.find(parent_id=user["id"])
        return {
            "total_dogs": len(self.store.dogs.find(owner_id=user["id"])),
            "upcoming_sessions": sum(
                1
                for session in sessions
                if session["status"] == SessionStatus.SCHEDULED.value
                and self._starts_after(session, now)
            ),
            "unread_messages": len(self.get_unread_messages(user["id"])),
        }

    def close(self) -> None:
        self.store.close()
