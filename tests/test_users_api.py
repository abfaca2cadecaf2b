from conftest import PASSWORD


def test_profile_update_and_password_change(client, signup):
    headers, user = signup("asha@civicwatch.org")

    response = client.put(
        "/api/users/profile",
        json={"name": "Asha P", "phone": "9876543210", "location": {"city": "Pune"}},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["user"]["phone"] == "9876543210"
    assert response.json()["user"]["location"]["city"] == "Pune"

    no_current = client.put("/api/users/profile", json={"password": "new-secret"}, headers=headers)
    assert no_current.status_code == 400
    wrong_current = client.put(
        "/api/users/profile", json={"password": "new-secret", "currentPassword": "nope"}, headers=headers
    )
    assert wrong_current.status_code == 400

    changed = client.put(
        "/api/users/profile", json={"password": "new-secret", "currentPassword": PASSWORD}, headers=headers
    )
    assert changed.status_code == 200
    login = client.post("/api/auth/login", json={"email": "asha@civicwatch.org", "password": "new-secret"})
    assert login.status_code == 200


def test_users_cannot_edit_each_other(client, signup):
    headers, _ = signup("asha@civicwatch.org")
    _, other = signup("ravi@civicwatch.org", name="Ravi Kumar")

    response = client.put(f"/api/users/profile/{other['id']}", json={"name": "Hacked"}, headers=headers)

    assert response.status_code == 403


def test_live_stats(client, signup, report_payload):
    headers, user = signup("asha@civicwatch.org")
    client.post("/api/reports", json=report_payload(), headers=headers)
    client.post("/api/reports", json=report_payload(category="Lighting"), headers=headers)

    stats = client.get("/api/users/stats", headers=headers).json()["stats"]

    assert stats["totalReports"] == 2
    assert stats["pendingReports"] == 2
    assert stats["categories"] == ["Lighting", "Road Maintenance"]
    assert len(stats["recentActivity"]) == 2
    assert client.get(f"/api/users/stats/{user['id']}", headers=headers).json()["stats"]["totalReports"] == 2


def test_admin_user_management(client, signup, admin_headers):
    headers, user = signup("asha@civicwatch.org")
    signup("ravi@civicwatch.org", name="Ravi Kumar")

    assert client.get("/api/users", headers=headers).status_code == 403

    listing = client.get("/api/users", params={"role": "citizen"}, headers=admin_headers).json()
    assert listing["total"] == 2
    assert all("hashedPassword" not in u for u in listing["users"])

    search = client.get("/api/users", params={"search": "ravi"}, headers=admin_headers).json()
    assert [u["name"] for u in search["users"]] == ["Ravi Kumar"]

    promoted = client.put(f"/api/users/{user['id']}/role", json={"role": "official"}, headers=admin_headers)
    assert promoted.json()["user"]["role"] == "official"


def test_admin_cannot_delete_or_demote_self(client, admin_headers):
    admin = client.get("/api/auth/verify", headers=admin_headers).json()["user"]

    assert client.delete(f"/api/users/{admin['id']}", headers=admin_headers).status_code == 400
    response = client.put(f"/api/users/{admin['id']}/role", json={"role": "citizen"}, headers=admin_headers)
    assert response.status_code == 400


def test_deleting_user_removes_their_reports(client, signup, admin_headers, report_payload):
    headers, user = signup("asha@civicwatch.org")
    report = client.post("/api/reports", json=report_payload(), headers=headers).json()["report"]

    response = client.delete(f"/api/users/{user['id']}", headers=admin_headers)

    assert response.status_code == 200
    assert client.get(f"/api/reports/{report['id']}").status_code == 404
    assert client.get("/api/auth/verify", headers=headers).status_code == 401


def test_deleting_user_withdraws_assignments_and_upvotes(client, signup, admin_headers, report_payload):
    asha_headers, _ = signup("asha@civicwatch.org")
    ravi_headers, ravi = signup("ravi@civicwatch.org", name="Ravi Kumar")
    client.put(f"/api/users/{ravi['id']}/role", json={"role": "official"}, headers=admin_headers)
    report = client.post("/api/reports", json=report_payload(), headers=asha_headers).json()["report"]
    assert client.post(f"/api/reports/{report['id']}/upvote", headers=ravi_headers).json()["added"] is True
    assigned = client.put(
        f"/api/admin/reports/{report['id']}/status",
        json={"status": "in-progress", "assignedTo": ravi["id"]},
        headers=admin_headers,
    )
    assert assigned.json()["report"]["assignedTo"] == ravi["id"]

    response = client.delete(f"/api/users/{ravi['id']}", headers=admin_headers)

    assert response.status_code == 200
    stored = client.get(f"/api/reports/{report['id']}").json()["report"]
    assert stored["assignedTo"] is None
    assert stored["upvotes"] == []
    owner = client.get("/api/auth/verify", headers=asha_headers).json()["user"]
    assert owner["stats"]["upvotesReceived"] == 0


def test_top_contributors_is_public(client, signup, admin_headers, report_payload):
    asha_headers, asha = signup("asha@civicwatch.org")
    ravi_headers, ravi = signup("ravi@civicwatch.org", name="Ravi Kumar")
    report = client.post("/api/reports", json=report_payload(), headers=asha_headers).json()["report"]
    client.post("/api/reports", json=report_payload(), headers=ravi_headers)
    client.post("/api/reports", json=report_payload(), headers=ravi_headers)
    client.put(f"/api/admin/reports/{report['id']}/status", json={"status": "resolved"}, headers=admin_headers)

    contributors = client.get("/api/users/top-contributors").json()["contributors"]

    assert [c["userId"] for c in contributors] == [asha["id"], ravi["id"]]
    assert contributors[0]["civicPoints"] == 10
    assert contributors[1]["totalReports"] == 2
