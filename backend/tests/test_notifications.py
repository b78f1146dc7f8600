from sqlmodel import Session

from accountbook import models
from accountbook.database import engine

API = "/api/v1"
MISSING_UUID = "0b7e3a52-9c1d-4f7e-8a6b-5d4c3b2a1f00"


def _notify(family_uuid, user_uuid=None, title="Notice"):
    with Session(engine) as session:
        n = models.Notification(
            family_uuid=family_uuid, user_uuid=user_uuid, type=models.NotificationType.BUDGET_50_EXCEEDED,
            title=title, message=f"{title} body", year_month="2025-03",
        )
        session.add(n)
        session.commit()
        return n.uuid


def test_list_shows_own_and_family_wide(client, register_user, create_family, join_family):
    owner = register_user("owner")
    member = register_user("member")
    family = create_family(owner["headers"])
    join_family(owner, member, family["uuid"])
    _notify(family["uuid"], owner["uuid"], "for owner")
    _notify(family["uuid"], member["uuid"], "for member")
    _notify(family["uuid"], None, "for everyone")

    r = client.get(f"{API}/families/{family['uuid']}/notifications", headers=owner["headers"])
    assert r.status_code == 200
    data = r.json()["data"]
    assert {n["title"] for n in data["notifications"]} == {"for owner", "for everyone"}
    assert data["unreadCount"] == 2
    assert data["totalCount"] == 2


def test_mark_as_read(client, register_user, create_family):
    owner = register_user("owner")
    family = create_family(owner["headers"])
    first = _notify(family["uuid"], owner["uuid"])
    _notify(family["uuid"], owner["uuid"])

    r = client.get(f"{API}/families/{family['uuid']}/notifications/unread-count", headers=owner["headers"])
    assert r.json()["data"] == {"unreadCount": 2}

    r = client.patch(f"{API}/notifications/{first}/read", headers=owner["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["isRead"] is True
    r = client.get(f"{API}/notifications/{first}", headers=owner["headers"])
    assert r.json()["data"]["isRead"] is True

    r = client.get(f"{API}/families/{family['uuid']}/notifications/unread-count", headers=owner["headers"])
    assert r.json()["data"]["unreadCount"] == 1

    r = client.post(f"{API}/families/{family['uuid']}/notifications/mark-all-read", headers=owner["headers"])
    assert r.status_code == 200
    assert r.json()["data"] == {"updatedCount": 1}
    r = client.get(f"{API}/families/{family['uuid']}/notifications/unread-count", headers=owner["headers"])
    assert r.json()["data"]["unreadCount"] == 0


def test_other_users_notification_is_hidden(client, register_user, create_family, join_family):
    owner = register_user("owner")
    member = register_user("member")
    stranger = register_user("stranger")
    family = create_family(owner["headers"])
    join_family(owner, member, family["uuid"])
    private = _notify(family["uuid"], owner["uuid"])
    shared = _notify(family["uuid"], None)

    r = client.get(f"{API}/notifications/{private}", headers=member["headers"])
    assert r.status_code == 404
    assert r.json()["code"] == "N001"

    r = client.get(f"{API}/notifications/{shared}", headers=member["headers"])
    assert r.status_code == 200

    r = client.get(f"{API}/notifications/{shared}", headers=stranger["headers"])
    assert r.status_code == 403
    assert r.json()["code"] == "F003"

    r = client.get(f"{API}/notifications/{MISSING_UUID}", headers=owner["headers"])
    assert r.json()["code"] == "N001"
