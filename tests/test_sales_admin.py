import uuid

from fastapi.testclient import TestClient

from solarcrm.auth.roles import RoleName
from solarcrm.main import app
from solarcrm.models.models import Lead, LeadNote, User
from solarcrm.services import company_settings, permissions
from solarcrm.services import leads as lead_service
from solarcrm.services import projects as project_service
from solarcrm.services import users as user_service


def _lead(db, **kw):
    lead = lead_service.create_lead(
        db,
        name=kw.pop("name", "Paul Prospect"),
        email=kw.pop("email", "paul@example.com"),
        request_type="quote",
        **kw,
    )
    db.commit()
    return lead


def test_anonymous_is_redirected_to_login(client):
    for path in ("/sales/dashboard", "/sales/leads", "/admin/dashboard", "/admin/users"):
        res = client.get(path, follow_redirects=False)
        assert res.status_code == 303
        assert res.headers["location"] == "/login"


def test_signed_in_user_without_role_gets_403(client, customer, sales, auth):
    assert client.get("/sales/dashboard", headers=auth(customer)).status_code == 403
    res = client.get("/admin/dashboard", headers=auth(sales))
    assert res.status_code == 403
    assert res.json()["detail"] == "Unauthorized access. Admin privileges required."


def test_cookie_session_reaches_web_routes(customer, sales):
    browser = TestClient(app)
    res = browser.post("/api/auth/login", json={"email": sales.email, "password": "secret-password"})
    assert res.status_code == 200
    assert browser.get("/sales/dashboard").status_code == 200


def test_admin_is_sales_staff(client, admin, auth):
    assert client.get("/sales/dashboard", headers=auth(admin)).status_code == 200


def test_dashboard_counts(client, db, sales, auth):
    mine = _lead(db, email="a@example.com")
    lead_service.assign_lead(db, mine, sales.id)
    lead_service.update_status(db, mine, "converted")
    other = _lead(db, email="b@example.com")
    lead_service.update_status(db, other, "lost")
    _lead(db, email="c@example.com")
    db.commit()

    res = client.get("/sales/dashboard", headers=auth(sales))
    assert res.status_code == 200
    stats = res.json()["stats"]
    assert stats["total_leads"] == 3
    assert stats["new_leads"] == 1
    assert stats["converted_leads"] == 1
    assert stats["lost_leads"] == 1
    assert stats["conversion_rate"] == 50.0
    assert stats["my_leads"] == 1
    assert stats["my_converted_leads"] == 1
    assert stats["my_conversion_rate"] == 100.0


def test_sales_leads_index_filters_mine(client, db, sales, auth):
    mine = _lead(db, email="m@example.com", name="Mine")
    lead_service.assign_lead(db, mine, sales.id)
    _lead(db, email="o@example.com", name="Other")
    db.commit()

    res = client.get("/sales/leads", params={"assigned_to": "mine"}, headers=auth(sales))
    assert res.status_code == 200
    body = res.json()
    assert [l["name"] for l in body["leads"]] == ["Mine"]
    assert body["leads"][0]["assigned_salesperson"]["id"] == str(sales.id)
    assert {"id": str(sales.id), "name": "Sam Sales"} in body["sales_users"]


def test_sales_may_assign_and_unassign_on_web_route(client, db, sales, auth):
    lead = _lead(db)
    res = client.post(f"/sales/leads/{lead.id}/assign", json={"assigned_to": str(sales.id)}, headers=auth(sales))
    assert res.status_code == 200
    assert res.json()["lead"]["status"] == "assigned"

    res = client.post(f"/sales/leads/{lead.id}/assign", json={"assigned_to": None}, headers=auth(sales))
    assert res.status_code == 200
    assert res.json()["lead"]["status"] == "new"
    assert "assigned_salesperson" not in res.json()["lead"]


def test_status_update_on_web_route(client, db, sales, auth):
    lead = _lead(db)
    res = client.patch(f"/sales/leads/{lead.id}/status", json={"status": "qualified"}, headers=auth(sales))
    assert res.status_code == 200
    assert res.json()["lead"]["status"] == "qualified"
    assert client.patch(f"/sales/leads/{lead.id}/status", json={"status": "done"}, headers=auth(sales)).status_code == 422


def test_notes_add_show_and_delete(client, db, sales, auth):
    lead = _lead(db)
    res = client.post(f"/sales/leads/{lead.id}/notes", json={"content": "Angerufen, Termin folgt"}, headers=auth(sales))
    assert res.status_code == 200
    note = res.json()["note"]
    assert note["user"]["name"] == "Sam Sales"

    shown = client.get(f"/sales/leads/{lead.id}", headers=auth(sales)).json()["lead"]
    assert shown["notes_count"] == 1
    assert shown["notes"][0]["content"] == "Angerufen, Termin folgt"
    assert shown["project"] is None

    assert client.delete(f"/sales/leads/{lead.id}/notes/{note['id']}", headers=auth(sales)).status_code == 200
    assert db.query(LeadNote).count() == 0


def test_note_through_wrong_lead_is_404(client, db, sales, auth):
    owner = _lead(db, email="owner@example.com")
    other = _lead(db, email="other@example.com")
    note = lead_service.add_note(db, owner, sales, "privat")
    db.commit()
    res = client.delete(f"/sales/leads/{other.id}/notes/{note.id}", headers=auth(sales))
    assert res.status_code == 404
    assert db.query(LeadNote).count() == 1


def test_empty_note_is_rejected(client, db, sales, auth):
    lead = _lead(db)
    assert client.post(f"/sales/leads/{lead.id}/notes", json={"content": ""}, headers=auth(sales)).status_code == 422


def test_sales_projects_index_shows_timeline(client, db, customer, sales, auth):
    project_service.create_project(db, customer, name="Scheune", location_lat=1, location_lng=2)
    db.commit()
    rows = client.get("/sales/projects", headers=auth(sales)).json()
    assert len(rows) == 1
    assert rows[0]["user_name"] == "Carla Customer"
    assert rows[0]["timeline_events"][0]["event_type"] == "project_created"


# --- admin ----------------------------------------------------------------

def test_admin_manages_users(client, db, admin, auth):
    headers = auth(admin)
    res = client.post(
        "/admin/users",
        json={"name": "Neu Sales", "email": "neu@example.com", "password": "longenough", "role": "sales"},
        headers=headers,
    )
    assert res.status_code == 201
    created = res.json()
    assert created["roles"] == ["sales"]
    assert created["email_verified_at"] is not None

    dup = client.post(
        "/admin/users",
        json={"name": "Dup", "email": "NEU@example.com", "password": "longenough", "role": "user"},
        headers=headers,
    )
    assert dup.status_code == 409

    bad_role = client.post(
        "/admin/users",
        json={"name": "X", "email": "x@example.com", "password": "longenough", "role": "manager"},
        headers=headers,
    )
    assert bad_role.status_code == 422

    patched = client.patch(f"/admin/users/{created['id']}", json={"role": "admin"}, headers=headers)
    assert patched.json()["roles"] == ["admin"]

    listed = client.get("/admin/users", headers=headers).json()
    assert sorted(listed["roles"]) == ["admin", "sales", "user"]
    assert any(u["id"] == created["id"] and u["is_admin"] for u in listed["users"])

    assert client.delete(f"/admin/users/{created['id']}", headers=headers).status_code == 200
    assert db.query(User).filter(User.id == uuid.UUID(created["id"])).count() == 0


def test_admin_cannot_delete_self(client, admin, auth):
    res = client.delete(f"/admin/users/{admin.id}", headers=auth(admin))
    assert res.status_code == 422


def test_verify_email_twice_is_rejected(client, db, admin, auth):
    pending = user_service.create_user(
        db, name="Pending", email="pending@example.com", password="longenough", role=RoleName.USER, verified=False
    )
    db.commit()
    assert client.post(f"/admin/users/{pending.id}/verify", headers=auth(admin)).status_code == 200
    assert client.post(f"/admin/users/{pending.id}/verify", headers=auth(admin)).status_code == 422


def test_deleting_user_keeps_lead_but_clears_assignment(client, db, admin, make_user, auth):
    seller = make_user(RoleName.SALES)
    lead = _lead(db)
    lead_service.assign_lead(db, lead, seller.id)
    db.commit()
    assert client.delete(f"/admin/users/{seller.id}", headers=auth(admin)).status_code == 200
    db.expire_all()
    assert db.get(Lead, lead.id).assigned_to is None


def test_admin_trash_and_restore_projects(client, db, customer, admin, auth):
    project = project_service.create_project(db, customer, name="Papierkorb", location_lat=1, location_lng=2)
    db.commit()
    headers = auth(admin)

    assert client.delete(f"/admin/projects/{project.id}", headers=headers).status_code == 200
    assert client.get("/admin/projects", headers=headers).json() == []
    trashed = client.get("/admin/projects", params={"trashed": True}, headers=headers).json()
    assert [p["id"] for p in trashed] == [str(project.id)]

    restored = client.post(f"/admin/projects/{project.id}/restore", headers=headers)
    assert restored.status_code == 200
    assert restored.json()["id"] == str(project.id)

    assert client.delete(f"/admin/projects/{project.id}/force", headers=headers).status_code == 200
    assert client.get(f"/admin/projects/{project.id}", headers=headers).status_code == 404


def test_company_settings_update_and_cache(client, db, admin, auth):
    headers = auth(admin)
    assert client.get("/admin/settings", headers=headers).json()["company_name"] == "Solar Lead Generator"

    res = client.put(
        "/admin/settings",
        json={"company_name": "Sonnenkraft GmbH", "primary_color": "#112233"},
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json()["company_name"] == "Sonnenkraft GmbH"
    # the landing page sees the new branding straight away
    assert client.get("/landing").json()["company_name"] == "Sonnenkraft GmbH"
    assert company_settings.get(db, "primary_color") == "#112233"
    assert company_settings.get(db, "secondary_color") == "#1F2937"


def test_company_settings_reject_bad_colour(client, admin, auth):
    res = client.put("/admin/settings", json={"primary_color": "yellow"}, headers=auth(admin))
    assert res.status_code == 422


def test_permission_changes_reach_running_gate(client, db, sales, auth):
    lead = _lead(db)
    lead_service.assign_lead(db, lead, sales.id)
    db.commit()
    assert client.get(f"/api/leads/{lead.id}", headers=auth(sales)).status_code == 200

    permissions.sync_roles(db, sales, [RoleName.USER])
    db.commit()
    assert client.get(f"/api/leads/{lead.id}", headers=auth(sales)).status_code == 403
