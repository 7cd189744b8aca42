import unittest

from justdogs.webapp import create_app

from .test_assessment import BASE_ANSWERS


class WebAppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.app = create_app(
            {
                "DATABASE": ":memory:",
                "REMOTE_DATABASE": None,
                "SEED_DEMO_USERS": True,
                "REQUIRE_CONFIRMATION": False,
                "LOG_LEVEL": "WARNING",
                "TESTING": True,
            }
        )
        self.client = self.app.test_client()
        self.system = self.app.extensions["justdogs"]
        self.admin = self.login("admin@justdogs.co.za", "admin123")
        self.trainer = self.login("trainer@justdogs.co.za", "trainer123")
        self.parent = self.login("parent@justdogs.co.za", "parent123")

    def tearDown(self) -> None:
        self.system.close()

    def login(self, email: str, password: str) -> dict:
        response = self.client.post("/auth/login", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['session']['token']}"}}

    def create_dog(self) -> dict:
        response = self.client.post(
            "/dogs", json={"name": "Rex", "breed": "Kelpie", "age": 3}, headers=self.parent["headers"]
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def create_booking(self, dog_id: int) -> dict:
        response = self.client.post(
            "/bookings",
            json={
                "dog_id": dog_id,
                "trainer_id": self.trainer["id"],
                "booking_type": "dog_training",
                "training_level": "beginner",
                "start_time": "2024-05-01T09:00:00+00:00",
            },
            headers=self.parent["headers"],
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def test_register_and_me(self) -> None:
        response = self.client.post(
            "/auth/register",
            json={"email": "new@example.com", "password": "secret1", "full_name": "New Parent"},
        )
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body["user"]["role"], "parent")
        me = self.client.get("/auth/me", headers={"Authorization": f"Bearer {body['session']['token']}"})
        self.assertEqual(me.get_json()["email"], "new@example.com")

    def test_auth_errors(self) -> None:
        self.assertEqual(self.client.get("/auth/me").status_code, 401)
        response = self.client.post("/auth/login", json={"email": "admin@justdogs.co.za", "password": "nope"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["type"], "AuthError")
        response = self.client.post("/auth/logout", headers=self.parent["headers"])
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get("/auth/me", headers=self.parent["headers"]).status_code, 401)

    def test_services_are_public(self) -> None:
        response = self.client.get("/services")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.get_json()), 5)
        self.assertEqual(response.get_json()[0]["price_display"], "R150.00")

    def test_dog_crud_and_access(self) -> None:
        dog = self.create_dog()
        self.assertEqual(dog["owner_id"], self.parent["id"])
        self.assertEqual(self.client.get(f"/dogs/{dog['id']}", headers=self.trainer["headers"]).status_code, 200)
        patched = self.client.patch(f"/dogs/{dog['id']}", json={"weight": 20}, headers=self.parent["headers"])
        self.assertEqual(patched.get_json()["weight"], 20)
        self.assertEqual(
            self.client.patch(f"/dogs/{dog['id']}", json={"weight": 21}, headers=self.trainer["headers"]).status_code,
            403,
        )
        found = self.client.get("/dogs?q=kelp", headers=self.parent["headers"]).get_json()
        self.assertEqual([item["id"] for item in found], [dog["id"]])
        self.assertEqual(self.client.get("/dogs/999", headers=self.parent["headers"]).status_code, 404)
        self.assertEqual(self.client.delete(f"/dogs/{dog['id']}", headers=self.parent["headers"]).status_code, 204)

    def test_patch_rejects_unknown_fields(self) -> None:
        response = self.client.patch("/profile", json={"user_id": self.admin["id"]}, headers=self.parent["headers"])
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["type"], "ValidationError")
        dog = self.create_dog()
        response = self.client.patch(f"/dogs/{dog['id']}", json={"dog_id": 1}, headers=self.parent["headers"])
        self.assertEqual(response.status_code, 400)
        booking = self.create_booking(dog["id"])
        response = self.client.patch(
            f"/bookings/{booking['id']}", json={"expected_version": 1}, headers=self.admin["headers"]
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.patch(
            f"/bookings/{booking['id']}", json={"location": "Park", "version": 1}, headers=self.admin["headers"]
        )
        self.assertEqual(response.get_json()["location"], "Park")
        me = self.client.get("/auth/me", headers=self.parent["headers"]).get_json()
        self.assertEqual(me["id"], self.parent["id"])

    def test_booking_status_flow(self) -> None:
        booking = self.create_booking(self.create_dog()["id"])
        self.assertEqual(booking["end_time"], "2024-05-01T10:00:00+00:00")
        response = self.client.post(
            f"/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=self.parent["headers"]
        )
        self.assertEqual(response.status_code, 403)
        response = self.client.post(
            f"/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=self.trainer["headers"]
        )
        self.assertEqual(response.get_json()["status"], "confirmed")
        response = self.client.post(
            f"/bookings/{booking['id']}/status", json={"status": "pending"}, headers=self.admin["headers"]
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["type"], "InvalidTransitionError")
        response = self.client.post(
            f"/bookings/{booking['id']}/status",
            json={"status": "completed", "version": booking["version"]},
            headers=self.admin["headers"],
        )
        self.assertEqual(response.status_code, 409)
        listed = self.client.get("/bookings?status=confirmed", headers=self.parent["headers"]).get_json()
        self.assertEqual([item["id"] for item in listed], [booking["id"]])

    def test_sessions_and_feedback(self) -> None:
        booking = self.create_booking(self.create_dog()["id"])
        self.client.post(f"/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=self.admin["headers"])
        response = self.client.post("/sessions", json={"booking_id": booking["id"]}, headers=self.trainer["headers"])
        self.assertEqual(response.status_code, 201)
        session = response.get_json()
        response = self.client.post(
            f"/sessions/{session['id']}/feedback",
            json={"notes": "Good boy", "progress_rating": 9},
            headers=self.trainer["headers"],
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post(
            f"/sessions/{session['id']}/feedback",
            json={"notes": "Good boy", "progress_rating": 4},
            headers=self.trainer["headers"],
        )
        self.assertEqual(response.get_json()["progress_rating"], 4)
        self.assertEqual(
            self.client.post("/sessions", json={"booking_id": booking["id"]}, headers=self.parent["headers"]).status_code,
            403,
        )

    def test_messages(self) -> None:
        response = self.client.post(
            "/messages",
            json={"subject": "Staff", "content": "Meeting", "is_announcement": True, "target_roles": ["trainer"]},
            headers=self.admin["headers"],
        )
        self.assertEqual(response.status_code, 201)
        notice = response.get_json()
        parent_view = self.client.get("/messages", headers=self.parent["headers"]).get_json()
        trainer_view = self.client.get("/messages", headers=self.trainer["headers"]).get_json()
        self.assertNotIn(notice["id"], [message["id"] for message in parent_view])
        self.assertIn(notice["id"], [message["id"] for message in trainer_view])
        response = self.client.post(
            "/messages",
            json={"subject": "All", "content": "Hi", "is_announcement": True},
            headers=self.parent["headers"],
        )
        self.assertEqual(response.status_code, 403)

        direct = self.client.post(
            "/messages",
            json={"recipient_id": self.parent["id"], "subject": "Homework", "content": "Practise sit"},
            headers=self.trainer["headers"],
        ).get_json()
        self.assertEqual(len(self.client.get("/messages/unread", headers=self.parent["headers"]).get_json()), 1)
        read = self.client.post(f"/messages/{direct['id']}/read", headers=self.parent["headers"]).get_json()
        self.assertIsNotNone(read["read_at"])
        self.assertEqual(self.client.get("/messages/unread", headers=self.parent["headers"]).get_json(), [])
        self.assertEqual(self.client.delete(f"/messages/{direct['id']}", headers=self.parent["headers"]).status_code, 403)
        self.assertEqual(self.client.delete(f"/messages/{direct['id']}", headers=self.trainer["headers"]).status_code, 204)

    def test_calendar_and_dashboard(self) -> None:
        self.create_booking(self.create_dog()["id"])
        events = self.client.get("/calendar/events?status=pending", headers=self.parent["headers"]).get_json()
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0]["id"].startswith("booking-"))
        month = self.client.get("/calendar/2024/5", headers=self.trainer["headers"]).get_json()
        self.assertEqual(month["month"], 5)
        self.assertTrue(any(cell["events"] for week in month["weeks"] for cell in week))
        self.assertEqual(self.client.get("/calendar/2024/13", headers=self.trainer["headers"]).status_code, 400)
        self.assertEqual(self.client.get("/calendar/events?status=bogus", headers=self.parent["headers"]).status_code, 400)
        dashboard = self.client.get("/dashboard", headers=self.admin["headers"]).get_json()
        self.assertEqual(dashboard["role"], "admin")
        self.assertEqual(dashboard["total_dogs"], 1)

    def test_assessment_to_dog(self) -> None:
        response = self.client.post("/assessments", json={"answers": BASE_ANSWERS})
        self.assertEqual(response.status_code, 201)
        code = response.get_json()["code"]
        response = self.client.post(
            "/dogs/from-assessment", json={"code": code, "name": "Milo"}, headers=self.parent["headers"]
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["owner_id"], self.parent["id"])
        self.assertEqual(self.client.post("/assessments", json={"answers": {}}).status_code, 400)


if __name__ == "__main__":
    unittest.main()
