from solarcrm.auth.security import verify_password
from solarcrm.models.models import Lead, Notification, Project, TimelineEvent, User
from solarcrm.services import permissions


PLANNER = {
    "name": "Mein Dach",
    "location_lat": 52.52,
    "location_lng": 13.405,
    "zoom": 19,
    "roof_areas": [
        {
            "name": "Ost",
            "path": [{"lat": 52.52, "lng": 13.405}, {"lat": 52.5201, "lng": 13.405}],
            "panel_type": "premium",
            "tilt_angle": 25,
            "orientation_angle": 90,
            "panel_count": 9,
        }
    ],
}


def _body(**overrides):
    body = {
        "name": "Lena Landing",
        "email": "lena@example.com",
        "phone": "030 123456",
        "request_type": "consultation",
    }
    body.update(overrides)
    return body


def test_landing_config_returns_branding(client):
    res = client.get("/landing")
    assert res.status_code == 200
    data = res.json()
    assert data["company_name"] == "Solar Lead Generator"
    assert data["company_settings"]["primary_color"] == "#EAB308"


def test_submission_without_account(client, db):
    res = client.post("/landing/leads", json=_body())
    assert res.status_code == 201
    data = res.json()
    assert data["account_created"] is False
    assert data["project"] is None
    assert data["lead"]["source"] == "landing_page"
    assert data["lead"]["status"] == "new"
    assert db.query(User).count() == 0
    assert db.query(Notification).count() == 0


def test_submission_with_account_creates_user_project_and_welcome(client, db):
    res = client.post("/landing/leads", json=_body(create_account=True, project_data=PLANNER))
    assert res.status_code == 201
    data = res.json()
    assert data["account_created"] is True
    assert data["project"]["name"] == "Mein Dach"
    assert data["project"]["total_panel_count"] == 9

    user = db.query(User).filter(User.email == "lena@example.com").one()
    assert permissions.roles_of(user) == ["user"]
    assert user.email_verified_at is not None

    project = db.query(Project).one()
    assert project.user_id == user.id
    assert project.status == "draft"
    assert db.query(TimelineEvent).filter(TimelineEvent.event_type == "project_created").count() == 1

    lead = db.query(Lead).one()
    assert lead.account_created is True
    assert lead.project_id == project.id

    welcome = db.query(Notification).one()
    assert welcome.template_key == "welcome_user"
    assert welcome.recipient_email == "lena@example.com"
    assert welcome.payload_json["project_name"] == "Mein Dach"
    # the generated password in the e-mail is the one stored for the account
    assert verify_password(welcome.payload_json["password"], user.password_hash)
    assert len(welcome.payload_json["password"]) == 12


def test_account_without_planner_data_gets_no_project(client, db):
    res = client.post("/landing/leads", json=_body(create_account=True))
    assert res.status_code == 201
    assert res.json()["project"] is None
    assert db.query(Project).count() == 0
    welcome = db.query(Notification).one()
    assert welcome.payload_json["project_name"] == "Meine Solar-Planung"


def test_existing_email_is_rejected_and_nothing_written(client, db, customer):
    res = client.post("/landing/leads", json=_body(email=customer.email.upper(), create_account=True, project_data=PLANNER))
    assert res.status_code == 422
    assert "email" in res.json()["detail"]["errors"]
    assert db.query(Lead).count() == 0
    assert db.query(Project).count() == 0
    assert db.query(Notification).count() == 0


def test_existing_email_is_fine_without_account(client, customer):
    res = client.post("/landing/leads", json=_body(email=customer.email))
    assert res.status_code == 201


def test_message_length_is_limited(client):
    res = client.post("/landing/leads", json=_body(message="x" * 1001))
    assert res.status_code == 422
