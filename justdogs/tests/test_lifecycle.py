import datetime as dt
import unittest

from justdogs.training.errors import InvalidTransitionError, ValidationError
from justdogs.training.lifecycle import (
    check_booking_transition,
    check_session_transition,
    is_terminal_booking,
    is_terminal_session,
    parse_timestamp,
    validate_booking_details,
    validate_rating,
    validate_time_range,
)
from justdogs.training.models import BookingStatus, UserRole, coerce
from justdogs.training.search import DOG_FIELDS, filter_records


class LifecycleTestCase(unittest.TestCase):
    def test_booking_happy_path(self) -> None:
        self.assertTrue(check_booking_transition("pending", "confirmed"))
        self.assertTrue(check_booking_transition("confirmed", "completed"))
        self.assertTrue(check_booking_transition(BookingStatus.PENDING, BookingStatus.CANCELLED))

    def test_same_status_is_noop(self) -> None:
        self.assertFalse(check_booking_transition("confirmed", "confirmed"))
        self.assertFalse(check_session_transition("in_progress", "in_progress"))

    def test_terminal_states_reject_moves(self) -> None:
        with self.assertRaises(InvalidTransitionError) as ctx:
            check_booking_transition("completed", "pending")
        self.assertEqual(ctx.exception.current, "completed")
        self.assertEqual(ctx.exception.target, "pending")
        with self.assertRaises(InvalidTransitionError):
            check_session_transition("cancelled", "scheduled")
        self.assertTrue(is_terminal_booking("cancelled"))
        self.assertTrue(is_terminal_session("completed"))
        self.assertFalse(is_terminal_session("scheduled"))

    def test_skipping_states_is_rejected(self) -> None:
        with self.assertRaises(InvalidTransitionError):
            check_booking_transition("pending", "completed")
        with self.assertRaises(InvalidTransitionError):
            check_session_transition("scheduled", "completed")

    def test_unknown_status_is_validation_error(self) -> None:
        with self.assertRaises(ValidationError):
            check_booking_transition("pending", "archived")

    def test_ratings(self) -> None:
        self.assertEqual(validate_rating(1), 1)
        self.assertEqual(validate_rating(5), 5)
        self.assertIsNone(validate_rating(None))
        for bad in (0, 6, 3.5, True, "4"):
            with self.assertRaises(ValidationError):
                validate_rating(bad)

    def test_time_range(self) -> None:
        start, end = validate_time_range("2024-05-01T09:00:00Z", "2024-05-01T10:00:00Z")
        self.assertEqual(end - start, dt.timedelta(hours=1))
        self.assertEqual(start.tzinfo, dt.timezone.utc)
        with self.assertRaises(ValidationError):
            validate_time_range("2024-05-01T10:00:00", "2024-05-01T10:00:00")
        with self.assertRaises(ValidationError):
            validate_time_range("2024-05-01T10:00:00", "2024-05-01T09:00:00")
        with self.assertRaises(ValidationError):
            validate_time_range("2024-05-01T09:00:00", "2024-05-01T10:00:00+02:00")
        with self.assertRaises(ValidationError):
            parse_timestamp("tomorrow", "start_time")

    def test_booking_details(self) -> None:
        details = validate_booking_details("dog_training", training_level="beginner")
        self.assertEqual(details["training_level"], "beginner")
        self.assertIsNone(details["consult_type"])
        self.assertEqual(validate_booking_details("consult", consult_type="behavioral")["consult_type"], "behavioral")
        with self.assertRaises(ValidationError):
            validate_booking_details("pet_care", training_level="beginner")
        with self.assertRaises(ValidationError):
            validate_booking_details("dog_training", consult_type="general")
        with self.assertRaises(ValidationError):
            validate_booking_details("grooming")

    def test_coerce(self) -> None:
        self.assertIs(coerce(UserRole, "trainer"), UserRole.TRAINER)
        with self.assertRaises(ValidationError):
            coerce(UserRole, "owner")


class SearchTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.dogs = [
            {"id": 1, "name": "Rex", "breed": "Kelpie"},
            {"id": 2, "name": "Molly", "breed": "Border Collie"},
            {"id": 3, "name": "Otis", "breed": None},
        ]

    def test_blank_term_returns_everything(self) -> None:
        self.assertEqual(filter_records(self.dogs, "", DOG_FIELDS), self.dogs)
        self.assertEqual(filter_records(self.dogs, "   ", DOG_FIELDS), self.dogs)
        self.assertEqual(filter_records(self.dogs, None, DOG_FIELDS), self.dogs)

    def test_case_insensitive_substring(self) -> None:
        found = filter_records(self.dogs, "COLL", DOG_FIELDS)
        self.assertEqual([dog["id"] for dog in found], [2])

    def test_no_match(self) -> None:
        self.assertEqual(filter_records(self.dogs, "poodle", DOG_FIELDS), [])


if __name__ == "__main__":
    unittest.main()
