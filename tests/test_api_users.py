"""
API tests for /api/users: admin management, self-service access, search
and stats.
"""
import pytest


@pytest.fixture
def admin(register):
    return register(email="admin@example.com", role="admin")


class TestAdminListing:
    """Test the admin-only user list."""

    def test_admin_lists_users(self, client, register, admin):
        _, admin_headers = admin
        register(email="grace@example.com", first_name="Grace")
        register(email="alan@example.com", first_name="Alan")

        response = client.get("/api/users", params={"sortBy": "email", "sortOrder": "ASC"}, headers=admin_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert [u["email"] for u in data["users"]] == [
            "admin@example.com", "alan@example.com", "grace@example.com"
        ]
        assert data["pagination"]["total"] == 3

    def test_filters(self, client, register, admin):
        _, admin_headers = admin
        register(email="grace@example.com", first_name="Grace", role="manager")

        response = client.get("/api/users", params={"role": "manager"}, headers=admin_headers)
        assert [u["email"] for u in response.json()["data"]["users"]] == ["grace@example.com"]

        response = client.get("/api/users", params={"search": "GRA"}, headers=admin_headers)
        assert response.json()["data"]["pagination"]["total"] == 1

    def test_member_forbidden(self, client, register):
        _, headers = register()
        response = client.get("/api/users", headers=headers)
        assert response.status_code == 403
        assert response.json()["message"] == "User role member is not authorized to access this route"


class TestUserAccess:
    """Test self/admin rules on single-user routes."""

    def test_self_view(self, client, register):
        user, headers = register()
        response = client.get(f"/api/users/{user['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["user"]["email"] == user["email"]

    def test_other_user_forbidden(self, client, register):
        other, _ = register()
        _, headers = register()
        response = client.get(f"/api/users/{other['id']}", headers=headers)
        assert response.status_code == 403

    def test_self_update_cannot_change_role(self, client, register):
        user, headers = register()

        response = client.put(f"/api/users/{user['id']}", json={"role": "admin"}, headers=headers)
        assert response.status_code == 403

        response = client.put(f"/api/users/{user['id']}", json={"lastName": "Hopper"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["user"]["lastName"] == "Hopper"

    def test_admin_deactivates_user(self, client, register, admin):
        """Test that a deactivated user can no longer log in."""
        _, admin_headers = admin
        user, _ = register(email="bye@example.com")

        response = client.put(f"/api/users/{user['id']}", json={"isActive": False}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["user"]["isActive"] is False

        response = client.post("/api/auth/login", json={"email": "bye@example.com", "password": "secret1"})
        assert response.status_code == 401

    def test_email_taken(self, client, register, admin):
        _, admin_headers = admin
        user, _ = register()
        response = client.put(
            f"/api/users/{user['id']}", json={"email": "ADMIN@example.com"}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Email is already taken"


class TestUserDeletion:
    """Test admin deletion guards."""

    def test_delete_user(self, client, register, admin):
        _, admin_headers = admin
        user, _ = register()

        response = client.delete(f"/api/users/{user['id']}", headers=admin_headers)
        assert response.status_code == 200

        response = client.get(f"/api/users/{user['id']}", headers=admin_headers)
        assert response.status_code == 404

    def test_cannot_delete_self(self, client, admin):
        user, admin_headers = admin
        response = client.delete(f"/api/users/{user['id']}", headers=admin_headers)
        assert response.status_code == 400

    def test_cannot_delete_project_owner(self, client, register, admin):
        _, admin_headers = admin
        owner, owner_headers = register()
        client.post("/api/projects", json={"name": "Launch"}, headers=owner_headers)

        response = client.delete(f"/api/users/{owner['id']}", headers=admin_headers)
        assert response.status_code == 400
        assert "owns projects" in response.json()["message"]

    def test_member_cannot_delete(self, client, register):
        other, _ = register()
        _, headers = register()
        response = client.delete(f"/api/users/{other['id']}", headers=headers)
        assert response.status_code == 403


class TestSearchAndStats:
    """Test user search and per-user stats."""

    def test_search_excludes_caller_and_team(self, client, register):
        me, headers = register(first_name="Searcher")
        grace, _ = register(email="grace@example.com", first_name="Grace")
        register(email="gram@example.com", first_name="Gramps")
        project = client.post(
            "/api/projects", json={"name": "Launch", "team": [{"userId": grace["id"]}]}, headers=headers
        ).json()["data"]["project"]

        response = client.get("/api/users/search", params={"q": "gra"}, headers=headers)
        emails = [u["email"] for u in response.json()["data"]["users"]]
        assert emails == ["grace@example.com", "gram@example.com"]

        response = client.get(
            "/api/users/search", params={"q": "gra", "projectId": project["id"]}, headers=headers
        )
        emails = [u["email"] for u in response.json()["data"]["users"]]
        assert emails == ["gram@example.com"]

    def test_search_query_too_short(self, client, register):
        _, headers = register()
        response = client.get("/api/users/search", params={"q": "g"}, headers=headers)
        assert response.status_code == 400

    def test_stats(self, client, register):
        user, headers = register()
        project = client.post("/api/projects", json={"name": "Launch"}, headers=headers).json()["data"]["project"]
        task = client.post(
            "/api/tasks",
            json={"title": "Write spec", "projectId": project["id"], "assignedToId": user["id"]},
            headers=headers,
        ).json()["data"]["task"]
        client.put(f"/api/tasks/{task['id']}", json={"status": "completed"}, headers=headers)

        response = client.get(f"/api/users/{user['id']}/stats", headers=headers)

        assert response.status_code == 200
        assert response.json()["data"]["stats"] == {
            "ownedProjects": 1,
            "memberProjects": 0,
            "totalTasks": 1,
            "completedTasks": 1,
            "overdueTasks": 0,
            "completionRate": 100,
        }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
