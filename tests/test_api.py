# =============================================================================
# tests/test_api.py - HTTP API Tests
# =============================================================================
# End-to-end requests through FastAPI's TestClient. Queued Celery tasks are
# recorded by the `queued` fixture (conftest) instead of reaching a broker.
# =============================================================================

from tests.conftest import TEST_PASSWORD

CASE_BODY = {
    "case_name": "Riverside Case 12",
    "case_date": "2025-03-14T09:30:00",
    "temperature": {"value": 28.5, "unit": "C"},
    "location": {"region": "Region IV-A", "province": "Laguna",
                 "city": "Calamba", "barangay": "Real"},
}


class TestPublicEndpoints:
    """Tests for endpoints that need no session."""

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/api/v1/health"

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token_is_401(self, client):
        response = client.get("/api/v1/cases")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_token_is_401(self, client):
        response = client.get("/api/v1/cases", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestAuthFlow:
    """Tests for the auth routes."""

    def test_signup_then_signin_requires_verification(self, client):
        # Act
        signup = client.post("/api/v1/auth/signup", json={
            "first_name": "Jose",
            "last_name": "Reyes",
            "email": "jose.reyes@forensics.org",
            "password": TEST_PASSWORD,
            "confirm_password": TEST_PASSWORD,
        })
        signin = client.post("/api/v1/auth/signin", json={
            "email": "jose.reyes@forensics.org", "password": TEST_PASSWORD,
        })

        # Assert
        assert signup.status_code == 201
        assert signin.status_code == 403

    def test_weak_password_lists_field_errors(self, client):
        response = client.post("/api/v1/auth/signup", json={
            "first_name": "Jose",
            "last_name": "Reyes",
            "email": "jose.reyes@forensics.org",
            "password": "short",
            "confirm_password": "short",
        })

        body = response.json()
        assert response.status_code == 422
        assert body["code"] == "VALIDATION_ERROR"
        assert any(error["field"] == "password" for error in body["errors"])

    def test_signin_and_me(self, client, user):
        # Act
        token = client.post("/api/v1/auth/signin", json={
            "email": user.email, "password": TEST_PASSWORD,
        }).json()["access_token"]
        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        # Assert
        assert me.status_code == 200
        assert me.json()["email"] == "analyst@forensics.org"

    def test_signout_invalidates_token(self, client, auth_headers):
        assert client.post("/api/v1/auth/signout", headers=auth_headers).status_code == 204

        assert client.get("/api/v1/auth/me", headers=auth_headers).status_code == 401

    def test_wrong_password(self, client, user):
        response = client.post("/api/v1/auth/signin", json={
            "email": user.email, "password": "Wrong-Password-1",
        })

        assert response.status_code == 401


class TestCaseEndpoints:
    """Tests for the case routes."""

    def test_create_and_list(self, client, auth_headers):
        # Act
        created = client.post("/api/v1/cases", json=CASE_BODY, headers=auth_headers)
        listed = client.get("/api/v1/cases", headers=auth_headers)

        # Assert
        assert created.status_code == 201
        assert created.json()["status"] == "draft"
        assert created.json()["image_count"] == 0
        # Drafts stay out of the results list
        assert listed.json() == []

    def test_duplicate_name_is_409(self, client, auth_headers):
        client.post("/api/v1/cases", json=CASE_BODY, headers=auth_headers)

        response = client.post("/api/v1/cases", json=CASE_BODY, headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_CASE_NAME"

    def test_other_users_case_is_404(self, client, auth_headers, make_user, make_case):
        case = make_case(make_user(email="colleague@forensics.org"))

        assert client.get(f"/api/v1/cases/{case.id}", headers=auth_headers).status_code == 404


class TestAnalysisEndpoints:
    """Tests for submitting and polling analysis."""

    def test_submit_queues_task(self, client, auth_headers, user, make_case, make_upload, queued):
        # Arrange
        case = make_case(user, status="draft")
        make_upload(case)

        # Act
        response = client.post(f"/api/v1/cases/{case.id}/analysis", headers=auth_headers)
        status = client.get(f"/api/v1/cases/{case.id}/analysis/status", headers=auth_headers)

        # Assert
        assert response.status_code == 202
        assert response.json()["task_id"] == "task-1"
        assert queued == [("run_case_analysis", (case.id,))]
        assert status.json()["status"] == "pending"

    def test_resubmitting_active_case_is_404(self, client, auth_headers, user, make_case, make_upload,
                                             make_result, queued):
        case = make_case(user)
        make_upload(case)
        make_result(case)

        response = client.post(f"/api/v1/cases/{case.id}/analysis", headers=auth_headers)

        assert response.status_code == 404
        assert queued == []

    def test_submit_without_images_is_400(self, client, auth_headers, user, make_case, queued):
        case = make_case(user, status="draft")

        response = client.post(f"/api/v1/cases/{case.id}/analysis", headers=auth_headers)

        assert response.status_code == 400
        assert queued == []


class TestExportEndpoints:
    """Tests for export requests."""

    def test_export_options_passed_to_task(self, client, auth_headers, user, make_case, queued):
        case = make_case(user)
        body = {"format": "raw_data",
                "password_protection": {"enabled": True, "password": "case-password"}}

        response = client.post(f"/api/v1/cases/{case.id}/exports", json=body, headers=auth_headers)

        assert response.status_code == 202
        name, (export_id, options) = queued[0]
        assert name == "generate_case_export"
        assert export_id == response.json()["export_id"]
        assert options["password_protection"]["password"] == "case-password"

    def test_short_password_is_422(self, client, auth_headers, user, make_case, queued):
        case = make_case(user)
        body = {"format": "raw_data", "password_protection": {"enabled": True, "password": "short"}}

        response = client.post(f"/api/v1/cases/{case.id}/exports", json=body, headers=auth_headers)

        assert response.status_code == 422
        assert queued == []


class TestDashboardEndpoints:
    """Tests for the dashboard routes."""

    def test_metrics_for_new_user(self, client, auth_headers):
        response = client.get("/api/v1/dashboard/metrics", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["total_cases"] == 0

    def test_case_rows(self, client, auth_headers, user, make_case, make_upload, make_detection, make_result):
        case = make_case(user)
        make_result(case)
        make_detection(make_upload(case))

        rows = client.get("/api/v1/dashboard/cases", headers=auth_headers).json()

        assert [row["case_name"] for row in rows] == ["Riverside Case 12"]
