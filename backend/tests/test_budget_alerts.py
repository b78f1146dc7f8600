from datetime import datetime
import threading
from decimal import Decimal

from sqlmodel import Session, select

from accountbook import models, services
from accountbook.database import engine
from accountbook.services import alert_type_for, budget_alert_message, budget_percentage

API = "/api/v1"


def _spend(client, headers, family_uuid, category_uuid, amount, date="2025-03-10T10:00:00", **extra):
    payload = {"categoryUuid": category_uuid, "amount": amount, "date": date}
    payload.update(extra)
    r = client.post(f"{API}/families/{family_uuid}/expenses", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _types(client, headers, family_uuid):
    r = client.get(f"{API}/families/{family_uuid}/notifications", headers=headers)
    return sorted(n["type"] for n in r.json()["data"]["notifications"])


def test_budget_percentage_rounding():
    assert budget_percentage(Decimal("50000"), Decimal("100000")) == Decimal("50.00")
    assert budget_percentage(Decimal("1"), Decimal("3")) == Decimal("33.33")
    assert budget_percentage(Decimal("2"), Decimal("3")) == Decimal("66.67")
    assert budget_percentage(Decimal("10"), Decimal("0")) == Decimal("0.00")


def test_alert_thresholds_are_strict():
    assert alert_type_for(Decimal("50.00")) is None
    assert alert_type_for(Decimal("50.01")) == models.NotificationType.BUDGET_50_EXCEEDED
    assert alert_type_for(Decimal("80.00")) == models.NotificationType.BUDGET_50_EXCEEDED
    assert alert_type_for(Decimal("80.01")) == models.NotificationType.BUDGET_80_EXCEEDED
    assert alert_type_for(Decimal("100.00")) == models.NotificationType.BUDGET_80_EXCEEDED
    assert alert_type_for(Decimal("100.01")) == models.NotificationType.BUDGET_100_EXCEEDED


def test_alert_messages():
    msg = budget_alert_message("우리집", models.NotificationType.BUDGET_50_EXCEEDED,
                               Decimal("100000"), Decimal("60000"), Decimal("60.00"))
    assert msg == "우리집의 이번 달 예산이 50%를 초과했습니다. 현재 100,000원 중 60,000원(60.0%)을 사용했습니다."
    msg = budget_alert_message("우리집", models.NotificationType.BUDGET_80_EXCEEDED,
                               Decimal("100000"), Decimal("85000"), Decimal("85.00"))
    assert msg.endswith("예산 초과에 주의하세요!")
    msg = budget_alert_message("우리집", models.NotificationType.BUDGET_100_EXCEEDED,
                               Decimal("100000"), Decimal("123456"), Decimal("123.46"))
    assert msg == "우리집의 이번 달 예산을 초과했습니다! 예산 100,000원 중 123,456원(123.5%)을 사용했습니다."


def test_expense_triggers_alert_for_every_member(client, register_user, create_family, first_category,
                                                 join_family, eventually):
    owner = register_user("owner")
    member = register_user("member")
    family = create_family(owner["headers"], name="우리집", monthly_budget=100000)
    join_family(owner, member, family["uuid"])
    category = first_category(owner["headers"], family["uuid"])

    _spend(client, owner["headers"], family["uuid"], category["uuid"], 60000)

    def owner_alerted():
        return _types(client, owner["headers"], family["uuid"]) == ["BUDGET_50_EXCEEDED"]

    assert eventually(owner_alerted)
    services.event_publisher.drain()
    assert _types(client, member["headers"], family["uuid"]) == ["BUDGET_50_EXCEEDED"]

    r = client.get(f"{API}/families/{family['uuid']}/notifications", headers=member["headers"])
    notification = r.json()["data"]["notifications"][0]
    assert notification["userUuid"] == member["uuid"]
    assert notification["referenceType"] == "BUDGET"
    assert notification["yearMonth"] == "2025-03"
    assert notification["title"] == "예산 50% 초과"
    assert "60,000원(60.0%)" in notification["message"]


def test_each_threshold_alerts_once_per_month(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=100000)
    category = first_category(owner["headers"], family["uuid"])

    _spend(client, owner["headers"], family["uuid"], category["uuid"], 60000)
    services.event_publisher.drain()
    _spend(client, owner["headers"], family["uuid"], category["uuid"], 25000)
    services.event_publisher.drain()
    _spend(client, owner["headers"], family["uuid"], category["uuid"], 1000)
    services.event_publisher.drain()
    assert _types(client, owner["headers"], family["uuid"]) == ["BUDGET_50_EXCEEDED", "BUDGET_80_EXCEEDED"]

    _spend(client, owner["headers"], family["uuid"], category["uuid"], 20000)
    services.event_publisher.drain()
    assert _types(client, owner["headers"], family["uuid"]) == [
        "BUDGET_100_EXCEEDED", "BUDGET_50_EXCEEDED", "BUDGET_80_EXCEEDED",
    ]

    # a new month starts over
    _spend(client, owner["headers"], family["uuid"], category["uuid"], 70000, date="2025-04-02T10:00:00")
    services.event_publisher.drain()
    r = client.get(f"{API}/families/{family['uuid']}/notifications", headers=owner["headers"])
    april = [n for n in r.json()["data"]["notifications"] if n["yearMonth"] == "2025-04"]
    assert [n["type"] for n in april] == ["BUDGET_50_EXCEEDED"]


def test_excluded_spending_does_not_count(client, register_user, create_family):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=100000)
    categories = client.get(f"{API}/families/{family['uuid']}/categories", headers=owner["headers"]).json()["data"]
    excluded, regular = categories[0]["uuid"], categories[1]["uuid"]
    client.put(f"{API}/categories/{excluded}", json={"excludeFromBudget": True}, headers=owner["headers"])

    _spend(client, owner["headers"], family["uuid"], excluded, 90000)
    _spend(client, owner["headers"], family["uuid"], regular, 90000, excludeFromBudget=True)
    services.event_publisher.drain()
    assert _types(client, owner["headers"], family["uuid"]) == []

    _spend(client, owner["headers"], family["uuid"], regular, 40000)
    services.event_publisher.drain()
    assert _types(client, owner["headers"], family["uuid"]) == []


def test_amount_update_rechecks_budget(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=100000)
    category = first_category(owner["headers"], family["uuid"])
    expense = _spend(client, owner["headers"], family["uuid"], category["uuid"], 10000)
    services.event_publisher.drain()
    assert _types(client, owner["headers"], family["uuid"]) == []

    r = client.put(f"{API}/families/{family['uuid']}/expenses/{expense['uuid']}", json={"amount": 95000},
                   headers=owner["headers"])
    assert r.status_code == 200
    services.event_publisher.drain()
    assert _types(client, owner["headers"], family["uuid"]) == ["BUDGET_80_EXCEEDED"]


def test_no_budget_means_no_alerts(client, register_user, create_family):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=0)
    with Session(engine) as session:
        created = services.BudgetAlertService(session).check_and_create_budget_alert(
            family["uuid"], datetime(2025, 3, 1))
    assert created == []


def test_alert_service_direct(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=1000)
    category = first_category(owner["headers"], family["uuid"])
    _spend(client, owner["headers"], family["uuid"], category["uuid"], 2000, date="2025-07-01T00:00:00")
    services.event_publisher.drain()

    with Session(engine) as session:
        again = services.BudgetAlertService(session).check_and_create_budget_alert(
            family["uuid"], datetime(2025, 7, 20))
    assert again == []
    assert _types(client, owner["headers"], family["uuid"]) == ["BUDGET_100_EXCEEDED"]


def _alerts(family_uuid):
    with Session(engine) as session:
        stmt = select(models.Notification).where(models.Notification.family_uuid == family_uuid)
        return [(n.user_uuid, n.type, n.year_month) for n in session.exec(stmt).all()]


def test_duplicate_insert_is_skipped(client, register_user, create_family, first_category, monkeypatch):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=1000)
    category = first_category(owner["headers"], family["uuid"])
    _spend(client, owner["headers"], family["uuid"], category["uuid"], 600)
    services.event_publisher.drain()
    assert len(_alerts(family["uuid"])) == 1

    # two checks that both passed the existence lookup before either inserted
    monkeypatch.setattr(services.repositories.NotificationRepository, "exists_for_member",
                        lambda self, *args: False)
    with Session(engine) as session:
        created = services.BudgetAlertService(session).check_and_create_budget_alert(
            family["uuid"], datetime(2025, 3, 15))
    assert created == []
    assert _alerts(family["uuid"]) == [(owner["uuid"], models.NotificationType.BUDGET_50_EXCEEDED, "2025-03")]


def test_concurrent_checks_create_one_alert(client, register_user, create_family, first_category, join_family):
    owner = register_user("owner")
    member = register_user("member")
    family = create_family(owner["headers"], monthly_budget=1000)
    join_family(owner, member, family["uuid"])
    category = first_category(owner["headers"], family["uuid"])
    _spend(client, owner["headers"], family["uuid"], category["uuid"], 600, date="2025-04-02T08:00:00")
    services.event_publisher.drain()
    with engine.begin() as conn:
        conn.execute(models.Notification.__table__.delete())

    workers = 8
    barrier = threading.Barrier(workers)
    errors = []

    def check():
        try:
            with Session(engine) as session:
                barrier.wait(timeout=10)
                services.BudgetAlertService(session).check_and_create_budget_alert(
                    family["uuid"], datetime(2025, 4, 20))
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=check) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert sorted(_alerts(family["uuid"])) == sorted([
        (owner["uuid"], models.NotificationType.BUDGET_50_EXCEEDED, "2025-04"),
        (member["uuid"], models.NotificationType.BUDGET_50_EXCEEDED, "2025-04"),
    ])


def test_burst_of_expense_events_alerts_each_member_once(client, register_user, create_family, first_category,
                                                         join_family):
    owner = register_user("owner")
    member = register_user("member")
    family = create_family(owner["headers"], monthly_budget=1000)
    join_family(owner, member, family["uuid"])
    category = first_category(owner["headers"], family["uuid"])
    expense = _spend(client, owner["headers"], family["uuid"], category["uuid"], 900, date="2025-05-03T12:00:00")
    services.event_publisher.drain()
    with engine.begin() as conn:
        conn.execute(models.Notification.__table__.delete())

    for _ in range(6):
        services.event_publisher.publish(services.ExpenseCreated(
            expense_uuid=expense["uuid"], family_uuid=family["uuid"], user_uuid=owner["uuid"],
            amount=Decimal("900.00"), date=datetime(2025, 5, 3, 12, 0)))
    assert services.event_publisher.drain(timeout=30) is True

    alerts = _alerts(family["uuid"])
    assert sorted(alerts) == sorted([
        (owner["uuid"], models.NotificationType.BUDGET_80_EXCEEDED, "2025-05"),
        (member["uuid"], models.NotificationType.BUDGET_80_EXCEEDED, "2025-05"),
    ])
