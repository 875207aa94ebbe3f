"""
Tests for the HTTP API

Runs the FastAPI app in-process with TestClient against fresh in-memory
services, seeded with the demo identities and reports.
"""

import pytest
from fastapi.testclient import TestClient

from civicdesk.core import AccountService, ReportService
from civicdesk.main import create_app
from civicdesk.observability import get_metrics
from civicdesk.web.auth import (
    CSRF_COOKIE,
    CSRF_HEADER,
    SESSION_COOKIE,
    create_reset_token,
    reset_rate_limits,
)


CITIZEN = {"email": "user@example.com", "password": "password"}
AGENT = {"email": "agent@bhimdatta.gov.np", "password": "password"}


@pytest.fixture(autouse=True)
def clean_slate():
    reset_rate_limits()
    get_metrics().reset()
    yield
    reset_rate_limits()


@pytest.fixture
def services():
    return ReportService(), AccountService()


@pytest.fixture
def client(services):
    reports, accounts = services
    app = create_app(reports=reports, accounts=accounts, seed=True)
    with TestClient(app) as c:
        yield c


def login(client, creds):
    resp = client.post("/api/account/login", json=creds)
    assert resp.status_code == 200, resp.text
    return resp.json()


def find(client, title):
    feed = client.get("/api/public/reports").json()
    return next(r for r in feed if r["title"] == title)


def expires_cookie(resp, name):
    return any(
        header.startswith(f"{name}=") and "Max-Age=0" in header
        for header in resp.headers.get_list("set-cookie")
    )


class TestPublicFeed:
    """Anonymous read access."""

    def test_demo_feed_ordered_by_update(self, client):
        resp = client.get("/api/public/reports")

        assert resp.status_code == 200
        assert resp.headers["Cache-Control"].startswith("public")
        titles = [r["title"] for r in resp.json()]
        assert titles == ["Pothole on Highway", "Garbage Collection Issue", "Broken Street Light"]

    def test_status_filter(self, client):
        watched = client.get("/api/public/reports", params={"status": "watched"}).json()
        assert [r["title"] for r in watched] == ["Garbage Collection Issue"]

        assert len(client.get("/api/public/reports", params={"status": "all"}).json()) == 3

    def test_unknown_status_filter(self, client):
        resp = client.get("/api/public/reports", params={"status": "closed"})
        assert resp.status_code == 400

    def test_search(self, client):
        found = client.get("/api/public/reports", params={"q": "highway"}).json()
        assert [r["title"] for r in found] == ["Pothole on Highway"]

    def test_detail(self, client):
        pothole = find(client, "Pothole on Highway")
        resp = client.get(f"/api/public/reports/{pothole['id']}")

        assert resp.status_code == 200
        body = resp.json()
        assert [m["kind"] for m in body["media"]] == ["image", "video"]
        assert [c["text"] for c in body["comments"]] == [
            "This has been reported to the Highway Department.",
            "Repair team has been scheduled for next week.",
        ]

    def test_detail_bad_id(self, client):
        resp = client.get("/api/public/reports/not-a-uuid")
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid report ID"

    def test_detail_missing(self, client):
        resp = client.get("/api/public/reports/00000000-0000-0000-0000-000000000000")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Problem not found"


class TestAccountApi:
    """Registration, login and self-service."""

    def test_register_logs_in_as_citizen(self, client):
        resp = client.post(
            "/api/account/register",
            json={"name": "Sita Sharma", "email": "sita@example.com", "password": "secret1"},
        )

        assert resp.status_code == 201
        assert resp.json()["role"] == "citizen"
        assert "password_hash" not in resp.json()
        assert client.get("/api/account/me").json()["email"] == "sita@example.com"

    def test_register_existing_email(self, client):
        resp = client.post(
            "/api/account/register",
            json={"name": "Another John", "email": "user@example.com", "password": "secret1"},
        )
        assert resp.status_code == 409
        assert resp.json()["detail"] == "User already exists"

    def test_login_sets_session_and_csrf_cookies(self, client):
        body = login(client, CITIZEN)

        assert body["name"] == "John Doe"
        assert client.cookies.get(SESSION_COOKIE)
        assert client.cookies.get(CSRF_COOKIE)

    def test_bad_login(self, client):
        resp = client.post("/api/account/login", json={**CITIZEN, "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid credentials"
        assert get_metrics().login_failures == 1

    def test_login_rate_limited(self, client):
        for _ in range(5):
            client.post("/api/account/login", json={**CITIZEN, "password": "nope"})

        resp = client.post("/api/account/login", json=CITIZEN)
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0

    def test_me_requires_login(self, client):
        resp = client.get("/api/account/me")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Not authenticated"

    def test_forged_cookie_is_expired(self, client):
        client.cookies.set(SESSION_COOKIE, "not-a-signed-value")

        resp = client.get("/api/account/me")

        assert resp.status_code == 401
        assert expires_cookie(resp, SESSION_COOKIE)
        assert expires_cookie(resp, CSRF_COOKIE)

    def test_session_of_deleted_identity_is_expired(self, client, services):
        _, accounts = services
        login(client, CITIZEN)
        accounts.delete_account(accounts.find_by_email(CITIZEN["email"]).id)

        resp = client.post(
            "/api/reports",
            json={"title": "Pothole", "description": "Deep", "location": "Ring Road"},
        )

        assert resp.status_code == 401
        assert expires_cookie(resp, SESSION_COOKIE)

    def test_plain_401_leaves_cookies_alone(self, client):
        resp = client.get("/api/account/me")
        assert resp.status_code == 401
        assert resp.headers.get_list("set-cookie") == []

    def test_logout(self, client):
        login(client, CITIZEN)
        assert client.post("/api/account/logout").status_code == 200
        assert client.get("/api/account/me").status_code == 401

    def test_update_profile(self, client):
        login(client, CITIZEN)

        resp = client.patch("/api/account/profile", json={"name": "John D."})
        assert resp.status_code == 200
        assert resp.json()["name"] == "John D."
        assert client.get("/api/account/me").json()["name"] == "John D."

    def test_email_cannot_change(self, client):
        login(client, CITIZEN)
        resp = client.patch("/api/account/profile", json={"email": "new@example.com"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Email cannot be changed"

    def test_change_password(self, client):
        login(client, CITIZEN)

        wrong = client.post(
            "/api/account/password",
            json={"current_password": "nope", "new_password": "new-password"},
        )
        assert wrong.status_code == 401
        assert wrong.json()["detail"] == "Current password is incorrect"

        ok = client.post(
            "/api/account/password",
            json={"current_password": "password", "new_password": "new-password"},
        )
        assert ok.status_code == 200
        client.post("/api/account/logout")
        login(client, {**CITIZEN, "password": "new-password"})

    def test_password_reset_flow(self, client, services):
        _, accounts = services

        unknown = client.post("/api/account/password-reset", json={"email": "nobody@example.com"})
        assert unknown.status_code == 404
        assert unknown.json()["detail"] == "User not found"

        assert client.post("/api/account/password-reset", json=CITIZEN).status_code == 200

        identity = accounts.find_by_email(CITIZEN["email"])
        token = create_reset_token(identity, accounts.password_fingerprint(identity.id))
        resp = client.post(
            "/api/account/password-reset/confirm",
            json={"token": token, "new_password": "fresh-password"},
        )
        assert resp.status_code == 200
        login(client, {**CITIZEN, "password": "fresh-password"})

    def test_reset_token_works_once(self, client, services):
        _, accounts = services
        identity = accounts.find_by_email(CITIZEN["email"])
        token = create_reset_token(identity, accounts.password_fingerprint(identity.id))

        first = client.post(
            "/api/account/password-reset/confirm",
            json={"token": token, "new_password": "fresh-password"},
        )
        replay = client.post(
            "/api/account/password-reset/confirm",
            json={"token": token, "new_password": "attacker-password"},
        )

        assert first.status_code == 200
        assert replay.status_code == 400
        assert replay.json()["detail"] == "Invalid or expired reset token"
        login(client, {**CITIZEN, "password": "fresh-password"})

    def test_password_reset_bad_token(self, client):
        resp = client.post(
            "/api/account/password-reset/confirm",
            json={"token": "garbage", "new_password": "fresh-password"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid or expired reset token"

    def test_delete_account_keeps_reports(self, client, services):
        reports, accounts = services
        login(client, CITIZEN)
        before = client.get("/api/public/reports").json()

        resp = client.delete("/api/account")

        assert resp.status_code == 200
        assert client.get("/api/account/me").status_code == 401
        assert accounts.find_by_email(CITIZEN["email"]) is None
        assert client.get("/api/public/reports").json() == before


class TestReportApi:
    """Filing, commenting and triage over HTTP."""

    def test_create_requires_login(self, client):
        resp = client.post(
            "/api/reports",
            json={"title": "Pothole", "description": "Deep", "location": "Ring Road"},
        )
        assert resp.status_code == 401

    def test_citizen_files_report(self, client):
        login(client, CITIZEN)

        resp = client.post(
            "/api/reports",
            json={
                "title": "Fallen tree",
                "description": "Blocking the lane since last night.",
                "location": "Ward 4, Bhimdatta",
                "media": [{"url": "data:image/jpeg;base64,AAAA"}],
            },
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "pending"
        assert body["author_name"] == "John Doe"
        assert body["media"][0]["kind"] == "image"
        assert client.get("/api/public/reports").json()[0]["id"] == body["id"]
        assert get_metrics().reports_created == 1

    def test_missing_information(self, client):
        login(client, CITIZEN)
        resp = client.post("/api/reports", json={"title": "x", "description": " ", "location": "y"})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Missing information")

    def test_comment(self, client):
        login(client, CITIZEN)
        light = find(client, "Broken Street Light")

        resp = client.post(f"/api/reports/{light['id']}/comments", json={"text": "Still broken."})

        assert resp.status_code == 201
        assert resp.json()["author_name"] == "John Doe"
        detail = client.get(f"/api/public/reports/{light['id']}").json()
        assert len(detail["comments"]) == 1
        assert client.get("/api/public/reports").json()[0]["id"] == light["id"]

    def test_citizen_cannot_change_status(self, client):
        login(client, CITIZEN)
        light = find(client, "Broken Street Light")

        resp = client.patch(f"/api/reports/{light['id']}/status", json={"status": "success"})

        assert resp.status_code == 403
        assert resp.json()["detail"] == "Only municipality agents can update problem status"
        assert find(client, "Broken Street Light")["status"] == "pending"

    def test_agent_changes_status(self, client):
        login(client, AGENT)
        light = find(client, "Broken Street Light")

        resp = client.patch(f"/api/reports/{light['id']}/status", json={"status": "watched"})

        assert resp.status_code == 200
        assert resp.json()["status"] == "watched"
        assert resp.json()["updated_at"] > light["updated_at"]

    def test_status_of_missing_report(self, client):
        login(client, AGENT)
        resp = client.patch(
            "/api/reports/00000000-0000-0000-0000-000000000000/status",
            json={"status": "watched"},
        )
        assert resp.status_code == 404


class TestAgentDashboard:
    """Counts and filtered feed for agents."""

    def test_dashboard(self, client):
        login(client, AGENT)

        resp = client.get("/api/agent/dashboard")

        assert resp.status_code == 200
        assert resp.json()["stats"] == {"total": 3, "pending": 1, "watched": 1, "observed": 1, "success": 0}
        assert len(resp.json()["reports"]) == 3

    def test_dashboard_filter(self, client):
        login(client, AGENT)
        body = client.get("/api/agent/dashboard", params={"status": "observed"}).json()
        assert [r["title"] for r in body["reports"]] == ["Pothole on Highway"]
        assert body["stats"]["total"] == 3

    def test_citizens_forbidden(self, client):
        login(client, CITIZEN)
        assert client.get("/api/agent/dashboard").status_code == 403

    def test_anonymous_unauthorized(self, client):
        assert client.get("/api/agent/dashboard").status_code == 401


class TestCsrf:
    """Double-submit check when enforcement is on."""

    @pytest.fixture
    def enforce(self, monkeypatch):
        monkeypatch.setenv("CIVICDESK_REQUIRE_CSRF", "1")

    def test_write_without_token_rejected(self, client, enforce):
        login(client, CITIZEN)
        resp = client.patch("/api/account/profile", json={"name": "x"})
        assert resp.status_code == 403

    def test_write_with_token_accepted(self, client, enforce):
        login(client, CITIZEN)
        token = client.cookies.get(CSRF_COOKIE)
        resp = client.patch("/api/account/profile", json={"name": "John D."}, headers={CSRF_HEADER: token})
        assert resp.status_code == 200


class TestSystemEndpoints:
    """Health, metrics and API info."""

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_health_detailed(self, client):
        body = client.get("/health/detailed").json()
        assert body["status"] == "healthy"
        assert body["checks"]["report_store"]["count"] == 3
        assert body["checks"]["identity_store"]["count"] == 2

    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"

    def test_metrics(self, client):
        client.get("/health")
        summary = client.get("/metrics").json()
        assert summary["requests_total"] >= 1
        assert "status_changes" in summary

    def test_api_info(self, client):
        body = client.get("/api").json()
        assert body["storage_backend"] == "InMemoryReportStore"
        assert body["report_count"] == 3
