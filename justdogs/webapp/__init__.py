"""Flask application exposing the training platform as a JSON API."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from flask import Flask, jsonify, request

from justdogs.config import configure_logging, load_config
from justdogs.training import services
from justdogs.training.errors import (
    AuthError,
    AuthorizationError,
    ConflictError,
    JustDogsError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from justdogs.training.models import BookingStatus, UserRole
from justdogs.training.search import MESSAGE_FIELDS, filter_records
from justdogs.training.store import RecordStore
from justdogs.training.system import (
    BOOKING_UPDATE_FIELDS,
    DOG_UPDATE_FIELDS,
    PROFILE_FIELDS,
    SESSION_UPDATE_FIELDS,
    TrainingSystem,
    can_access_resource,
)

ERROR_STATUS: tuple[tuple[type[JustDogsError], int], ...] = (
    (AuthError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
    (TransportError, 503),
)

EVERYONE = tuple(UserRole)
STAFF = (UserRole.ADMIN, UserRole.TRAINER, UserRole.BEHAVIORIST)

DOG_FIELDS = (
    "name",
    "breed",
    "age",
    "weight",
    "medical_notes",
    "behavioral_notes",
    "vaccine_records",
    "preferences",
    "emergency_contact",
    "photo_url",
)
BOOKING_FIELDS = (
    "dog_id",
    "trainer_id",
    "booking_type",
    "start_time",
    "end_time",
    "training_level",
    "consult_type",
    "special_instructions",
    "location",
)
SESSION_FIELDS = ("dog_id", "trainer_id", "booking_id", "start_time", "end_time", "notes", "photos")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _pick(data: Mapping[str, Any], fields: Iterable[str], required: Iterable[str] = ()) -> dict:
    missing = [name for name in required if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing field(s): {', '.join(missing)}")
    return {name: data[name] for name in fields if name in data}


def _changes(data: Mapping[str, Any], allowed: Iterable[str]) -> dict:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")
    return dict(data)


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _owns(user: Mapping, record: Mapping) -> bool:
    """Whether ``user`` may see a booking or session."""

    if user["role"] in (UserRole.ADMIN.value, UserRole.BEHAVIORIST.value):
        return True
    if user["role"] == UserRole.TRAINER.value:
        return record["trainer_id"] == user["id"]
    return record["parent_id"] == user["id"]


def create_app(config: Mapping[str, Any] | None = None) -> Flask:
    """Create and configure the Flask application."""

    settings = load_config(config)
    configure_logging(settings["LOG_LEVEL"])

    app = Flask(__name__)
    app.config.from_mapping(settings)

    store = RecordStore.open(app.config["DATABASE"], remote_path=app.config["REMOTE_DATABASE"])
    system = TrainingSystem(store, require_confirmation=app.config["REQUIRE_CONFIRMATION"])
    if app.config["SEED_DEMO_USERS"]:
        system.seed_demo_users()
    app.extensions["justdogs"] = system

    def current_user(allowed: Iterable[UserRole] = EVERYONE) -> dict:
        return system.require_role(_bearer_token(), tuple(allowed))

    def visible_booking(user: Mapping, booking_id: int) -> dict:
        booking = system.get_booking(booking_id)
        if not _owns(user, booking):
            raise AuthorizationError("You cannot access this booking")
        return booking

    def visible_session(user: Mapping, session_id: int) -> dict:
        session = system.get_session(session_id)
        if not _owns(user, session):
            raise AuthorizationError("You cannot access this session")
        return session

    def owned_dog(user: Mapping, dog_id: int) -> dict:
        dog = system.get_dog(dog_id)
        if user["role"] == UserRole.PARENT.value and not can_access_resource(
            user["role"], dog["owner_id"], user["id"]
        ):
            raise AuthorizationError("You cannot access this dog")
        return dog

    @app.errorhandler(JustDogsError)
    def handle_error(exc: JustDogsError) -> Any:
        status = next(code for cls, code in ERROR_STATUS if isinstance(exc, cls))
        if status >= 500:
            app.logger.warning("Storage unavailable: %s", exc)
        return jsonify({"error": str(exc), "type": type(exc).__name__}), status

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.post("/auth/register")
    def register() -> Any:
        data = _json_body()
        fields = _pick(data, ("email", "password", "full_name", "role"), ("email", "password", "full_name"))
        fields.setdefault("role", UserRole.PARENT.value)
        return jsonify(system.sign_up(**fields)), 201

    @app.post("/auth/login")
    def login() -> Any:
        data = _json_body()
        return jsonify(system.sign_in(**_pick(data, ("email", "password"), ("email", "password"))))

    @app.post("/auth/logout")
    def logout() -> Any:
        current_user()
        system.sign_out(_bearer_token())
        return "", 204

    @app.get("/auth/me")
    def me() -> Any:
        return jsonify(current_user())

    @app.patch("/profile")
    def update_profile() -> Any:
        user = current_user()
        return jsonify(system.update_user_profile(user["id"], **_changes(_json_body(), PROFILE_FIELDS)))

    @app.get("/services")
    def list_services() -> Any:
        return jsonify([service.to_dict() for service in services.active_services()])

    # ------------------------------------------------------------------
    # Dogs and assessments
    # ------------------------------------------------------------------
    @app.get("/dogs")
    def list_dogs() -> Any:
        user = current_user()
        owner_id = user["id"] if user["role"] == UserRole.PARENT.value else request.args.get("owner_id") or None
        term = request.args.get("q")
        if term:
            return jsonify(system.search_dogs(term, owner_id=owner_id))
        return jsonify(system.list_dogs(owner_id=owner_id))

    @app.post("/dogs")
    def create_dog() -> Any:
        user = current_user((UserRole.PARENT, UserRole.ADMIN))
        data = _json_body()
        owner_id = user["id"] if user["role"] == UserRole.PARENT.value else data.get("owner_id")
        if owner_id is None:
            raise ValidationError("Missing field(s): owner_id")
        fields = _pick(data, DOG_FIELDS, ("name", "breed", "age"))
        return jsonify(system.create_dog(owner_id=owner_id, **fields)), 201

    @app.get("/dogs/<int:dog_id>")
    def get_dog(dog_id: int) -> Any:
        return jsonify(owned_dog(current_user(), dog_id))

    @app.patch("/dogs/<int:dog_id>")
    def update_dog(dog_id: int) -> Any:
        user = current_user((UserRole.PARENT, UserRole.ADMIN))
        owned_dog(user, dog_id)
        return jsonify(system.update_dog(dog_id, **_changes(_json_body(), DOG_UPDATE_FIELDS)))

    @app.delete("/dogs/<int:dog_id>")
    def delete_dog(dog_id: int) -> Any:
        user = current_user((UserRole.PARENT, UserRole.ADMIN))
        owned_dog(user, dog_id)
        system.delete_dog(dog_id)
        return "", 204

    @app.post("/assessments")
    def submit_assessment() -> Any:
        data = _json_body()
        answers = data.get("answers", data)
        if not isinstance(answers, dict):
            raise ValidationError("answers must be a JSON object")
        return jsonify(system.submit_assessment(answers)), 201

    @app.post("/dogs/from-assessment")
    def dog_from_assessment() -> Any:
        user = current_user((UserRole.PARENT,))
        data = _pick(_json_body(), ("code", "name"), ("code", "name"))
        dog = system.redeem_assessment(str(data["code"]), owner_id=user["id"], dog_name=data["name"])
        return jsonify(dog), 201

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------
    @app.get("/bookings")
    def list_bookings() -> Any:
        user = current_user()
        status = request.args.get("status") or None
        term = request.args.get("q")
        if term:
            return jsonify(system.search_bookings(term, user_id=user["id"], status_filter=status or "all"))
        return jsonify(system.list_bookings(user_id=user["id"], status=status))

    @app.post("/bookings")
    def create_booking() -> Any:
        user = current_user((UserRole.PARENT, UserRole.ADMIN))
        data = _json_body()
        fields = _pick(data, BOOKING_FIELDS, ("dog_id", "trainer_id", "booking_type", "start_time"))
        if user["role"] == UserRole.PARENT.value:
            fields["parent_id"] = user["id"]
        return jsonify(system.create_booking(**fields)), 201

    @app.get("/bookings/<int:booking_id>")
    def get_booking(booking_id: int) -> Any:
        return jsonify(visible_booking(current_user(), booking_id))

    @app.patch("/bookings/<int:booking_id>")
    def update_booking(booking_id: int) -> Any:
        user = current_user((UserRole.PARENT, UserRole.ADMIN))
        visible_booking(user, booking_id)
        data = _json_body()
        version = data.pop("version", None)
        changes = _changes(data, BOOKING_UPDATE_FIELDS)
        return jsonify(system.update_booking(booking_id, expected_version=version, **changes))

    @app.post("/bookings/<int:booking_id>/status")
    def change_booking_status(booking_id: int) -> Any:
        user = current_user()
        visible_booking(user, booking_id)
        data = _pick(_json_body(), ("status", "version"), ("status",))
        if user["role"] == UserRole.PARENT.value and data["status"] != BookingStatus.CANCELLED.value:
            raise AuthorizationError("Parents can only cancel bookings")
        return jsonify(
            system.change_booking_status(booking_id, data["status"], expected_version=data.get("version"))
        )

    @app.delete("/bookings/<int:booking_id>")
    def delete_booking(booking_id: int) -> Any:
        user = current_user((UserRole.PARENT, UserRole.ADMIN))
        visible_booking(user, booking_id)
        system.delete_booking(booking_id)
        return "", 204

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    @app.get("/sessions")
    def list_sessions() -> Any:
        user = current_user()
        status = request.args.get("status") or None
        term = request.args.get("q")
        if term:
            return jsonify(system.search_sessions(term, user_id=user["id"], status_filter=status or "all"))
        return jsonify(system.list_sessions(user_id=user["id"], status=status))

    @app.post("/sessions")
    def create_session() -> Any:
        current_user(STAFF)
        data = _json_body()
        if data.get("booking_id") is not None and "start_time" not in data:
            session = system.start_session_from_booking(data["booking_id"], notes=data.get("notes", ""))
            return jsonify(session), 201
        fields = _pick(data, SESSION_FIELDS, ("dog_id", "trainer_id", "start_time", "end_time"))
        return jsonify(system.create_session(**fields)), 201

    @app.get("/sessions/<int:session_id>")
    def get_session(session_id: int) -> Any:
        return jsonify(visible_session(current_user(), session_id))

    @app.patch("/sessions/<int:session_id>")
    def update_session(session_id: int) -> Any:
        user = current_user(STAFF)
        visible_session(user, session_id)
        data = _json_body()
        version = data.pop("version", None)
        changes = _changes(data, SESSION_UPDATE_FIELDS)
        return jsonify(system.update_session(session_id, expected_version=version, **changes))

    @app.post("/sessions/<int:session_id>/status")
    def change_session_status(session_id: int) -> Any:
        user = current_user(STAFF)
        visible_session(user, session_id)
        data = _pick(_json_body(), ("status", "version"), ("status",))
        return jsonify(
            system.change_session_status(session_id, data["status"], expected_version=data.get("version"))
        )

    @app.post("/sessions/<int:session_id>/feedback")
    def session_feedback(session_id: int) -> Any:
        user = current_user(STAFF)
        visible_session(user, session_id)
        data = _pick(_json_body(), ("notes", "progress_rating", "behavior_rating"))
        return jsonify(system.record_session_feedback(session_id, **data))

    @app.delete("/sessions/<int:session_id>")
    def delete_session(session_id: int) -> Any:
        user = current_user(STAFF)
        visible_session(user, session_id)
        system.delete_session(session_id)
        return "", 204

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    @app.get("/messages")
    def list_messages() -> Any:
        user = current_user()
        messages = system.get_messages_by_user(user["id"])
        term = request.args.get("q")
        if term:
            messages = filter_records(messages, term, MESSAGE_FIELDS)
        return jsonify(messages)

    @app.post("/messages")
    def send_message() -> Any:
        user = current_user()
        data = _json_body()
        fields = _pick(
            data,
            ("recipient_id", "subject", "content", "is_announcement", "target_roles"),
            ("subject", "content"),
        )
        if fields.get("is_announcement") and user["role"] != UserRole.ADMIN.value:
            raise AuthorizationError("Only admins can send announcements")
        return jsonify(system.send_message(sender_id=user["id"], **fields)), 201

    @app.get("/messages/unread")
    def unread_messages() -> Any:
        user = current_user()
        return jsonify(system.get_unread_messages(user["id"]))

    @app.post("/messages/<message_id>/read")
    def read_message(message_id: str) -> Any:
        user = current_user()
        return jsonify(system.mark_message_as_read(message_id, reader_id=user["id"]))

    @app.delete("/messages/<message_id>")
    def delete_message(message_id: str) -> Any:
        user = current_user()
        message = system.get_message(message_id)
        if not can_access_resource(user["role"], message["sender_id"], user["id"]):
            raise AuthorizationError("Only the sender can delete this message")
        system.delete_message(message_id)
        return "", 204

    # ------------------------------------------------------------------
    # Calendar and dashboard
    # ------------------------------------------------------------------
    @app.get("/calendar/events")
    def calendar_events() -> Any:
        user = current_user()
        events = system.calendar_events(user_id=user["id"], status_filter=request.args.get("status", "all"))
        return jsonify([event.to_dict() for event in events])

    @app.get("/calendar/<int:year>/<int:month>")
    def calendar_month(year: int, month: int) -> Any:
        user = current_user()
        weeks = system.calendar_month(
            year, month, user_id=user["id"], status_filter=request.args.get("status", "all")
        )
        return jsonify({"year": year, "month": month, "weeks": [[cell.to_dict() for cell in week] for week in weeks]})

    @app.get("/dashboard")
    def dashboard() -> Any:
        user = current_user()
        return jsonify(system.dashboard(user["id"]))

    return app


__all__ = ["create_app"]
