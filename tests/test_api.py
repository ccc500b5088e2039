"""Endpoint tests through FastAPI's TestClient."""

from datetime import timedelta

from jose import jwt

from app.core.security import create_access_token
from app.models.user import User


def start_visit_in_service(client, headers, clock, job_id="J-1"):
    visit = client.post("/api/visits/start-journey", json={"jobId": job_id}, headers=headers).json()
    clock.advance(minutes=20)
    return client.post(f"/api/visits/{visit['id']}/start-service", headers=headers).json()


class TestAuth:
    def test_login(self, client, alice):
        response = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == alice.id
        assert body["token_type"] == "bearer"
        assert body["is_admin"] is False

    def test_login_with_wrong_password(self, client, alice):
        response = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})

        assert response.status_code == 401

    def test_token_from_login_is_accepted(self, client, alice):
        token = client.post(
            "/api/auth/login", json={"username": "alice", "password": "secret123"}
        ).json()["access_token"]

        response = client.get("/api/visits", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json() == []

    def test_missing_token(self, client):
        assert client.get("/api/visits").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/visits", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_health_needs_no_token(self, client):
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/api/health").status_code == 200

    def test_token_carries_only_subject_and_expiry(self, admin):
        claims = jwt.get_unverified_claims(create_access_token(admin.id))

        assert set(claims) == {"sub", "exp"}
        assert claims["sub"] == str(admin.id)

    def test_admin_rights_follow_the_database(self, client, db, admin, auth):
        headers = auth(admin)
        db.query(User).filter(User.id == admin.id).update({"is_admin": False})
        db.commit()

        response = client.post(
            "/api/engineers", json={"username": "dave", "password": "secret123"}, headers=headers,
        )

        assert response.status_code == 403


class TestEngineers:
    def test_admin_creates_engineer(self, client, admin, auth):
        response = client.post(
            "/api/engineers",
            json={"username": "dave", "password": "secret123", "name": "Dave"},
            headers=auth(admin),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["username"] == "dave"
        assert body["isAdmin"] is False

    def test_duplicate_username(self, client, admin, alice, auth):
        response = client.post(
            "/api/engineers",
            json={"username": "alice", "password": "secret123"},
            headers=auth(admin),
        )

        assert response.status_code == 400

    def test_engineer_cannot_create_users(self, client, alice, auth):
        response = client.post(
            "/api/engineers",
            json={"username": "eve", "password": "secret123"},
            headers=auth(alice),
        )

        assert response.status_code == 403

    def test_list_excludes_admins(self, client, admin, alice, bob, auth):
        response = client.get("/api/engineers", headers=auth(admin))

        assert [e["username"] for e in response.json()] == ["alice", "bob"]


class TestVisitFlow:
    def test_full_visit(self, client, alice, auth, clock):
        response = client.post(
            "/api/visits/start-journey",
            json={"jobId": "J-1", "latitude": "51.5074", "longitude": -0.1278},
            headers=auth(alice),
        )
        assert response.status_code == 200
        visit = response.json()
        assert visit["status"] == "ON_ROUTE"
        assert visit["jobId"] == "J-1"
        assert visit["userId"] == alice.id
        assert visit["latitude"] == "51.5074"
        assert visit["longitude"] == "-0.1278"
        assert visit["collaborators"] == []

        clock.advance(minutes=20)
        visit = client.post(f"/api/visits/{visit['id']}/start-service", headers=auth(alice)).json()
        assert visit["status"] == "IN_SERVICE"
        assert visit["totalJourneyTime"] == 20
        assert visit["journeyEndTime"] == visit["serviceStartTime"]

        clock.advance(minutes=45)
        visit = client.post(f"/api/visits/{visit['id']}/complete", json={}, headers=auth(alice)).json()
        assert visit["status"] == "COMPLETED"
        assert visit["totalServiceTime"] == 45

        events = client.get(f"/api/visits/{visit['id']}/events", headers=auth(alice)).json()
        assert [e["transition"] for e in events] == ["start_journey", "start_service", "complete"]

    def test_second_journey_is_a_conflict(self, client, alice, auth):
        client.post("/api/visits/start-journey", json={"jobId": "J-1"}, headers=auth(alice))

        response = client.post("/api/visits/start-journey", json={"jobId": "J-2"}, headers=auth(alice))

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_invalid_transition_reports_states(self, client, alice, auth):
        visit = client.post("/api/visits/start-journey", json={"jobId": "J-1"}, headers=auth(alice)).json()

        response = client.post(f"/api/visits/{visit['id']}/complete", headers=auth(alice))

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "invalid_transition"
        assert body["current_status"] == "ON_ROUTE"
        assert body["attempted"] == "complete"

    def test_missing_job_id(self, client, alice, auth):
        response = client.post("/api/visits/start-journey", json={}, headers=auth(alice))

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_blocked_pause_needs_reason(self, client, alice, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        response = client.post(f"/api/visits/{visit['id']}/pause", json={"reason": "blocked"},
                               headers=auth(alice))

        assert response.status_code == 400

    def test_unknown_pause_reason(self, client, alice, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        response = client.post(f"/api/visits/{visit['id']}/pause", json={"reason": "lunch"},
                               headers=auth(alice))

        assert response.status_code == 422

    def test_block_and_unblock_to_another_engineer(self, client, alice, bob, admin, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        blocked = client.post(
            f"/api/visits/{visit['id']}/pause",
            json={"reason": "blocked", "blockReason": "Gate locked"},
            headers=auth(alice),
        ).json()
        assert blocked["status"] == "BLOCKED"
        assert blocked["blockReason"] == "Gate locked"
        assert blocked["blockedSince"] is not None

        unblocked = client.post(
            f"/api/visits/{visit['id']}/unblock",
            json={"newEngineerId": bob.id},
            headers=auth(admin),
        ).json()
        assert unblocked["status"] == "IN_SERVICE"
        assert unblocked["userId"] == bob.id
        assert unblocked["blockedSince"] is None

    def test_engineer_cannot_reassign(self, client, alice, bob, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        response = client.post(f"/api/visits/{visit['id']}/reassign",
                               json={"newEngineerId": bob.id}, headers=auth(alice))

        assert response.status_code == 403

    def test_admin_reassigns(self, client, alice, bob, admin, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        response = client.post(f"/api/visits/{visit['id']}/reassign",
                               json={"newEngineerId": bob.id}, headers=auth(admin))

        assert response.status_code == 200
        assert response.json()["userId"] == bob.id
        assert response.json()["status"] == "IN_SERVICE"

    def test_pause_and_resume(self, client, alice, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        paused = client.post(f"/api/visits/{visit['id']}/pause", json={"reason": "next_day"},
                             headers=auth(alice)).json()
        assert paused["status"] == "PAUSED_NEXT_DAY"

        clock.advance(minutes=16 * 60)
        resumed = client.post(f"/api/visits/{visit['id']}/resume", json={"resumeType": "service"},
                              headers=auth(alice)).json()
        assert resumed["status"] == "IN_SERVICE"

    def test_unknown_visit(self, client, alice, auth):
        response = client.get("/api/visits/999", headers=auth(alice))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_stranger_cannot_view(self, client, alice, bob, auth):
        visit = client.post("/api/visits/start-journey", json={"jobId": "J-1"}, headers=auth(alice)).json()

        assert client.get(f"/api/visits/{visit['id']}", headers=auth(bob)).status_code == 403


class TestPlannedVisits:
    def test_admin_plans_and_engineer_starts(self, client, alice, admin, auth, clock):
        planned = client.post(
            "/api/visits",
            json={"jobId": "J-9", "engineerId": alice.id, "notes": "Annual check"},
            headers=auth(admin),
        )
        assert planned.status_code == 200
        assert planned.json()["status"] == "NOT_STARTED"

        clock.advance(minutes=30)
        started = client.post(f"/api/visits/{planned.json()['id']}/start-journey", headers=auth(alice))

        assert started.status_code == 200
        assert started.json()["status"] == "ON_ROUTE"

    def test_engineer_cannot_plan(self, client, alice, bob, auth):
        response = client.post("/api/visits", json={"jobId": "J-9", "engineerId": bob.id},
                               headers=auth(alice))

        assert response.status_code == 403


class TestIdempotency:
    def test_replayed_complete_returns_stored_record(self, client, alice, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)
        clock.advance(minutes=45)
        headers = auth(alice, idempotency_key="complete-1")

        first = client.post(f"/api/visits/{visit['id']}/complete", headers=headers).json()
        clock.advance(minutes=10)
        second = client.post(f"/api/visits/{visit['id']}/complete", headers=headers)

        assert second.status_code == 200
        assert second.json()["version"] == first["version"]
        assert second.json()["totalServiceTime"] == 45

    def test_replayed_start_journey_does_not_conflict(self, client, alice, auth):
        headers = auth(alice, idempotency_key="start-1")

        first = client.post("/api/visits/start-journey", json={"jobId": "J-1"}, headers=headers).json()
        second = client.post("/api/visits/start-journey", json={"jobId": "J-1"}, headers=headers)

        assert second.status_code == 200
        assert second.json()["id"] == first["id"]

    def test_oversized_key(self, client, alice, auth):
        response = client.post("/api/visits/start-journey", json={"jobId": "J-1"},
                               headers=auth(alice, idempotency_key="k" * 200))

        assert response.status_code == 400


class TestJoin:
    def test_join_and_complete(self, client, alice, bob, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        joined = client.post(f"/api/visits/{visit['id']}/join", json={"note": "Second pair of hands"},
                             headers=auth(bob))
        assert joined.status_code == 200
        assert joined.json()["collaborators"] == [bob.id]
        assert joined.json()["collaborationNotes"] == "Second pair of hands"

        completed = client.post(f"/api/visits/{visit['id']}/complete", headers=auth(bob))
        assert completed.status_code == 200
        assert completed.json()["status"] == "COMPLETED"

    def test_join_without_body(self, client, alice, bob, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)

        assert client.post(f"/api/visits/{visit['id']}/join", headers=auth(bob)).status_code == 200

    def test_join_twice(self, client, alice, bob, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)
        client.post(f"/api/visits/{visit['id']}/join", headers=auth(bob))

        assert client.post(f"/api/visits/{visit['id']}/join", headers=auth(bob)).status_code == 409


class TestListingAndCalendar:
    def test_engineer_cannot_list_other_engineer(self, client, alice, bob, auth):
        response = client.get("/api/visits", params={"userId": bob.id}, headers=auth(alice))

        assert response.status_code == 403

    def test_admin_filters_by_engineer(self, client, alice, bob, admin, auth, clock):
        client.post("/api/visits/start-journey", json={"jobId": "J-1"}, headers=auth(alice))
        clock.advance(minutes=1)
        client.post("/api/visits/start-journey", json={"jobId": "J-2"}, headers=auth(bob))

        everything = client.get("/api/visits", headers=auth(admin)).json()
        only_bob = client.get("/api/visits", params={"userId": bob.id}, headers=auth(admin)).json()

        assert [v["jobId"] for v in everything] == ["J-2", "J-1"]
        assert [v["jobId"] for v in only_bob] == ["J-2"]

    def test_calendar_events(self, client, alice, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock, job_id="J-5")
        clock.advance(minutes=45)
        client.post(f"/api/visits/{visit['id']}/complete", headers=auth(alice))

        response = client.get("/api/visits/calendar", headers=auth(alice))

        assert response.status_code == 200
        events = response.json()
        assert [e["id"] for e in events] == [f"journey-{visit['id']}", f"service-{visit['id']}"]
        assert events[1]["title"] == "Service Visit - J-5"
        assert events[1]["jobId"] == "J-5"
        assert events[1]["editable"] is False

    def test_calendar_range(self, client, alice, auth, clock):
        visit = start_visit_in_service(client, auth(alice), clock)
        client.post(f"/api/visits/{visit['id']}/complete", headers=auth(alice))
        later = (clock.now + timedelta(days=1)).isoformat()

        response = client.get("/api/visits/calendar", params={"start": later}, headers=auth(alice))

        assert response.json() == []


class TestLocation:
    def test_record_and_read_latest(self, client, alice, auth, clock):
        taken = clock.now - timedelta(minutes=5)
        client.post("/api/location", json={"latitude": "1.0", "longitude": "1.0"}, headers=auth(alice))
        client.post("/api/location", json={"latitude": "0.5", "longitude": "0.5", "timestamp": taken.isoformat()},
                    headers=auth(alice))

        latest = client.get(f"/api/engineers/{alice.id}/location/latest", headers=auth(alice)).json()
        history = client.get(f"/api/engineers/{alice.id}/location", headers=auth(alice)).json()

        assert latest["latitude"] == "1.0"
        assert latest["userId"] == alice.id
        assert [s["latitude"] for s in history] == ["0.5", "1.0"]

    def test_invalid_coordinates(self, client, alice, auth):
        response = client.post("/api/location", json={"latitude": "95", "longitude": "0"}, headers=auth(alice))

        assert response.status_code == 400

    def test_other_engineers_location_is_private(self, client, alice, bob, admin, auth):
        client.post("/api/location", json={"latitude": "1.0", "longitude": "1.0"}, headers=auth(alice))

        assert client.get(f"/api/engineers/{alice.id}/location/latest", headers=auth(bob)).status_code == 403
        assert client.get(f"/api/engineers/{alice.id}/location/latest", headers=auth(admin)).status_code == 200

    def test_replayed_upload_is_stored_once(self, client, alice, auth):
        headers = auth(alice, idempotency_key="loc-1")
        first = client.post("/api/location", json={"latitude": "1.0", "longitude": "1.0"}, headers=headers)
        second = client.post("/api/location", json={"latitude": "1.0", "longitude": "1.0"}, headers=headers)

        assert second.json()["id"] == first.json()["id"]
        history = client.get(f"/api/engineers/{alice.id}/location", headers=auth(alice)).json()
        assert len(history) == 1
