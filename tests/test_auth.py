from conftest import PASSWORD


def test_signup_returns_token_and_public_user(client, signup):
    headers, user = signup("asha@civicwatch.org")

    assert headers["Authorization"].startswith("Bearer ")
    assert user["email"] == "asha@civicwatch.org"
    assert user["role"] == "citizen"
    assert user["civicPoints"] == 0
    assert user["stats"] == {"totalReports": 0, "resolvedReports": 0, "pendingReports": 0, "upvotesReceived": 0}
    assert "password" not in user and "hashedPassword" not in user


def test_duplicate_email_is_rejected_case_insensitively(client, signup):
    signup("asha@civicwatch.org")

    response = client.post(
        "/api/auth/signup",
        json={"name": "Asha Again", "email": "ASHA@CivicWatch.org", "password": PASSWORD},
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Email already registered"}


def test_signup_validation_errors(client):
    response = client.post(
        "/api/auth/signup",
        json={"name": "A", "email": "not-an-email", "password": "123", "phone": "12ab"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Validation Error"
    fields = {d["field"] for d in body["details"]}
    assert {"name", "email", "password", "phone"} <= fields


def test_login_errors_do_not_reveal_which_part_was_wrong(client, signup):
    signup("asha@civicwatch.org")

    unknown = client.post("/api/auth/login", json={"email": "nobody@civicwatch.org", "password": PASSWORD})
    wrong = client.post("/api/auth/login", json={"email": "asha@civicwatch.org", "password": "wrong-password"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {"success": False, "error": "Invalid email or password"}


def test_login_is_case_insensitive_and_records_last_login(client, signup):
    signup("asha@civicwatch.org")

    response = client.post("/api/auth/login", json={"email": "Asha@civicwatch.org", "password": PASSWORD})

    assert response.status_code == 200
    assert response.json()["user"]["lastLogin"] is not None


def test_verify(client, signup):
    headers, user = signup("asha@civicwatch.org")

    response = client.get("/api/auth/verify", headers=headers)
    assert response.status_code == 200
    assert response.json()["user"]["id"] == user["id"]
    assert "hashedPassword" not in response.json()["user"]

    missing = client.get("/api/auth/verify")
    assert missing.status_code == 401
    assert missing.json()["error"] == "No token provided"

    invalid = client.get("/api/auth/verify", headers={"Authorization": "Bearer not.a.token"})
    assert invalid.status_code == 401
    assert invalid.json()["error"] == "Invalid or expired token"


def test_suspended_user_cannot_log_in(client, signup, admin_headers):
    _, user = signup("asha@civicwatch.org")

    response = client.post(
        f"/api/admin/users/{user['id']}/manage",
        json={"action": "suspend", "reason": "Spam reports"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["user"]["isActive"] is False

    login = client.post("/api/auth/login", json={"email": "asha@civicwatch.org", "password": PASSWORD})
    assert login.status_code == 403


def test_logout(client, signup):
    headers, _ = signup("asha@civicwatch.org")

    response = client.post("/api/auth/logout", headers=headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
