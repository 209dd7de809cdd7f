import os
import unittest

os.environ.setdefault("BANDSYNC_USE_IN_MEMORY_BACKENDS", "true")

from fastapi.testclient import TestClient

from bandsync.app import create_app
from bandsync.dependencies import get_identity_provider, get_store
from bandsync.identity import InMemoryIdentityProvider
from bandsync.store import InMemoryDocumentStore


class BandSyncApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        store = get_store()
        if isinstance(store, InMemoryDocumentStore):
            store.reset()
        identity = get_identity_provider()
        if isinstance(identity, InMemoryIdentityProvider):
            identity.accounts.clear()
            identity.tokens.clear()
            identity.password_resets.clear()

    def _register(self, email, name):
        response = self.client.post(
            "/api/auth/register",
            json={"email": email, "password": "secret1", "name": name},
        )
        self.assertEqual(response.status_code, 201)
        payload = response.json()
        return payload["uid"], {"Authorization": f"Bearer {payload['id_token']}"}

    def test_register_login_and_profile(self):
        uid, headers = self._register("ann@band.io", "Ann")
        me = self.client.get("/api/users/me", headers=headers)
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["id"], uid)
        self.assertEqual(me.json()["role"], "Member")
        self.assertIsNone(me.json()["group_id"])

        login = self.client.post(
            "/api/auth/login", json={"email": "ANN@band.io", "password": "secret1"}
        )
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["uid"], uid)

        bad = self.client.post(
            "/api/auth/login", json={"email": "ann@band.io", "password": "wrong-pass"}
        )
        self.assertEqual(bad.status_code, 403)
        self.assertEqual(bad.json()["error"], "Unauthorized")

        updated = self.client.patch("/api/users/me", json={"phone": "555"}, headers=headers)
        self.assertEqual(updated.json()["phone"], "555")

    def test_duplicate_registration_conflicts(self):
        self._register("ann@band.io", "Ann")
        response = self.client.post(
            "/api/auth/register",
            json={"email": "ann@band.io", "password": "secret1", "name": "Other"},
        )
        self.assertEqual(response.status_code, 409)
        self.assertFalse(response.json()["retryable"])

    def test_requires_bearer_token(self):
        self.assertEqual(self.client.get("/api/users/me").status_code, 401)
        response = self.client.get(
            "/api/users/me", headers={"Authorization": "Bearer nope"}
        )
        self.assertEqual(response.status_code, 401)

    def test_group_lifecycle(self):
        ann, ann_headers = self._register("ann@band.io", "Ann")
        bob, bob_headers = self._register("bob@band.io", "Bob")

        created = self.client.post("/api/groups", json={"name": "Band"}, headers=ann_headers)
        self.assertEqual(created.status_code, 201)
        group_id = created.json()["group_id"]
        group = self.client.get(f"/api/groups/{group_id}", headers=ann_headers).json()
        self.assertEqual(group["members"], [ann])

        # Non-members cannot read the group.
        hidden = self.client.get(f"/api/groups/{group_id}", headers=bob_headers)
        self.assertEqual(hidden.status_code, 403)

        joined = self.client.post(
            "/api/groups/join", json={"code": group["code"].lower()}, headers=bob_headers
        )
        self.assertEqual(joined.json()["group_id"], group_id)
        session = self.client.get("/api/session", headers=bob_headers).json()
        self.assertTrue(session["is_pending_approval"])
        self.assertFalse(session["is_active_member"])

        pending = self.client.get(f"/api/groups/{group_id}/pending", headers=ann_headers)
        self.assertEqual([u["id"] for u in pending.json()], [bob])

        denied = self.client.post(
            f"/api/groups/{group_id}/pending/{bob}/approve", headers=bob_headers
        )
        self.assertEqual(denied.status_code, 403)

        approved = self.client.post(
            f"/api/groups/{group_id}/pending/{bob}/approve", headers=ann_headers
        )
        self.assertEqual(approved.json(), {"changed": True})
        session = self.client.get("/api/session", headers=bob_headers).json()
        self.assertTrue(session["is_active_member"])
        self.assertEqual(session["group"]["id"], group_id)

        members = self.client.get(f"/api/groups/{group_id}/members", headers=bob_headers)
        self.assertEqual(sorted(u["id"] for u in members.json()), sorted([ann, bob]))

    def test_last_admin_cannot_leave(self):
        _, headers = self._register("ann@band.io", "Ann")
        bob, bob_headers = self._register("bob@band.io", "Bob")
        group_id = self.client.post("/api/groups", json={"name": "Band"}, headers=headers).json()[
            "group_id"
        ]
        code = self.client.get(f"/api/groups/{group_id}", headers=headers).json()["code"]
        self.client.post("/api/groups/join", json={"code": code}, headers=bob_headers)
        self.client.post(f"/api/groups/{group_id}/pending/{bob}/approve", headers=headers)

        response = self.client.post(f"/api/groups/{group_id}/leave", headers=headers)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"], "LastAdminViolation")

    def test_unknown_invite_code(self):
        _, headers = self._register("ann@band.io", "Ann")
        response = self.client.post("/api/groups/join", json={"code": "ZZZZZZ"}, headers=headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "NotFound")
        self.assertEqual(set(response.json()), {"error", "detail", "retryable"})

    def test_error_body_is_documented(self):
        schema = self.client.get("/openapi.json").json()
        self.assertIn("ErrorResponse", schema["components"]["schemas"])
        join = schema["paths"]["/api/groups/join"]["post"]["responses"]
        self.assertEqual(
            join["404"]["content"]["application/json"]["schema"]["$ref"],
            "#/components/schemas/ErrorResponse",
        )

    def test_events_and_finances(self):
        _, headers = self._register("ann@band.io", "Ann")
        group_id = self.client.post("/api/groups", json={"name": "Band"}, headers=headers).json()[
            "group_id"
        ]
        event = self.client.post(
            f"/api/groups/{group_id}/events",
            json={"title": "Gig", "date": "2025-06-01T20:00:00Z", "type": "concert"},
            headers=headers,
        )
        self.assertEqual(event.status_code, 201)
        events = self.client.get(f"/api/groups/{group_id}/events", headers=headers).json()
        self.assertEqual([e["title"] for e in events], ["Gig"])

        # An offset-less timestamp is read as UTC and sorts with the others.
        event = self.client.post(
            f"/api/groups/{group_id}/events",
            json={"title": "Soundcheck", "date": "2025-06-01T18:00:00"},
            headers=headers,
        )
        self.assertEqual(event.status_code, 201)
        response = self.client.get(
            f"/api/groups/{group_id}/events",
            params={"start": "2025-06-01T19:00:00"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual([e["title"] for e in response.json()], ["Gig"])
        events = self.client.get(f"/api/groups/{group_id}/events", headers=headers).json()
        self.assertEqual([e["title"] for e in events], ["Soundcheck", "Gig"])

        record = self.client.post(
            f"/api/groups/{group_id}/finances",
            json={"type": "income", "amount": 250, "currency": "eur", "category": "merch"},
            headers=headers,
        )
        self.assertEqual(record.status_code, 201)
        summary = self.client.get(
            f"/api/groups/{group_id}/finances/summary", headers=headers
        ).json()
        self.assertEqual(summary["totals"]["EUR"]["balance"], 250)

        invalid = self.client.post(
            f"/api/groups/{group_id}/finances",
            json={"type": "income", "amount": 10, "currency": "EUR", "category": "food"},
            headers=headers,
        )
        self.assertEqual(invalid.status_code, 400)


if __name__ == "__main__":
    unittest.main()
