from datetime import date

from accountbook import services

API = "/api/v1"


def _post(client, headers, family_uuid, kind, category_uuid, amount, when, **extra):
    payload = {"categoryUuid": category_uuid, "amount": amount, "date": when}
    payload.update(extra)
    r = client.post(f"{API}/families/{family_uuid}/{kind}", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _setup(client, register_user, create_family, budget=4000):
    owner = register_user("owner")
    family = create_family(owner["headers"], monthly_budget=budget)
    categories = client.get(f"{API}/families/{family['uuid']}/categories", headers=owner["headers"]).json()["data"]
    return owner, family, categories[0], categories[1]


def test_category_summary(client, register_user, create_family):
    owner, family, food, cafe = _setup(client, register_user, create_family)
    h, f = owner["headers"], family["uuid"]
    _post(client, h, f, "expenses", food["uuid"], 3000, "2025-03-03T10:00:00")
    _post(client, h, f, "expenses", food["uuid"], 1000, "2025-03-04T10:00:00")
    _post(client, h, f, "expenses", cafe["uuid"], 1000, "2025-03-05T10:00:00")
    services.event_publisher.drain()

    r = client.get(f"{API}/families/{f}/dashboard/expenses/by-category", headers=h)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["familyUuid"] == f
    assert data["totalExpense"] == 5000
    first, second = data["categoryStats"]
    assert (first["categoryUuid"], first["totalAmount"], first["count"], first["percentage"]) == (
        food["uuid"], 4000, 2, 80)
    assert first["categoryName"] == food["name"]
    assert first["categoryColor"] == food["color"]
    assert (second["categoryUuid"], second["percentage"]) == (cafe["uuid"], 20)

    r = client.get(f"{API}/families/{f}/dashboard/expenses/by-category",
                   params={"startDate": "2025-03-04", "endDate": "2025-03-04"}, headers=h)
    data = r.json()["data"]
    assert data["totalExpense"] == 1000
    assert len(data["categoryStats"]) == 1

    r = client.get(f"{API}/families/{f}/dashboard/expenses/by-category", params={"categoryUuid": cafe["uuid"]},
                   headers=h)
    assert [s["categoryUuid"] for s in r.json()["data"]["categoryStats"]] == [cafe["uuid"]]


def test_category_summary_unknown_category(client, register_user, create_family):
    owner, family, food, cafe = _setup(client, register_user, create_family)
    h, f = owner["headers"], family["uuid"]
    _post(client, h, f, "expenses", cafe["uuid"], 500, "2025-03-05T10:00:00")
    client.delete(f"{API}/categories/{cafe['uuid']}", headers=h)
    services.event_publisher.drain()

    r = client.get(f"{API}/families/{f}/dashboard/expenses/by-category", headers=h)
    stat = r.json()["data"]["categoryStats"][0]
    assert stat["categoryUuid"] == "UNKNOWN"
    assert stat["categoryName"] == "미분류"
    assert stat["categoryIcon"] == "❓"
    assert stat["categoryColor"] == "#999999"
    assert stat["percentage"] == 100


def test_category_summary_empty(client, register_user, create_family):
    owner, family, _, _ = _setup(client, register_user, create_family)
    r = client.get(f"{API}/families/{family['uuid']}/dashboard/expenses/by-category", headers=owner["headers"])
    data = r.json()["data"]
    assert data["totalExpense"] == 0
    assert data["categoryStats"] == []


def test_monthly_stats(client, register_user, create_family):
    owner, family, food, cafe = _setup(client, register_user, create_family, budget=4000)
    h, f = owner["headers"], family["uuid"]
    _post(client, h, f, "expenses", food["uuid"], 3000, "2025-03-01T00:00:00")
    _post(client, h, f, "expenses", cafe["uuid"], 2000, "2025-03-31T23:59:59")
    _post(client, h, f, "expenses", cafe["uuid"], 9000, "2025-03-15T12:00:00", excludeFromBudget=True)
    _post(client, h, f, "expenses", food["uuid"], 7000, "2025-04-01T00:00:00")
    _post(client, h, f, "incomes", food["uuid"], 2500, "2025-03-20T00:00:00")
    services.event_publisher.drain()

    r = client.get(f"{API}/families/{f}/dashboard/stats/monthly", params={"year": 2025, "month": 3}, headers=h)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["monthlyExpense"] == 5000
    assert data["monthlyIncome"] == 2500
    assert data["budget"] == 4000
    assert data["remainingBudget"] == -1000
    assert data["familyMembers"] == 1
    assert (data["year"], data["month"]) == (2025, 3)


def test_monthly_stats_defaults_to_current_month(client, register_user, create_family):
    owner, family, _, _ = _setup(client, register_user, create_family)
    r = client.get(f"{API}/families/{family['uuid']}/dashboard/stats/monthly", headers=owner["headers"])
    data = r.json()["data"]
    today = date.today()
    assert (data["year"], data["month"]) == (today.year, today.month)
    assert data["remainingBudget"] == 4000


def test_monthly_stats_invalid_month(client, register_user, create_family):
    owner, family, _, _ = _setup(client, register_user, create_family)
    r = client.get(f"{API}/families/{family['uuid']}/dashboard/stats/monthly", params={"year": 2025, "month": 13},
                   headers=owner["headers"])
    assert r.status_code == 400
    assert r.json()["code"] == "C001"


def test_daily_stats(client, register_user, create_family):
    owner, family, food, cafe = _setup(client, register_user, create_family)
    h, f = owner["headers"], family["uuid"]
    _post(client, h, f, "expenses", food["uuid"], 100, "2024-02-10T08:00:00")
    _post(client, h, f, "expenses", cafe["uuid"], 50, "2024-02-10T20:00:00", excludeFromBudget=True)
    _post(client, h, f, "expenses", food["uuid"], 30, "2024-02-29T23:00:00")
    _post(client, h, f, "incomes", food["uuid"], 1000, "2024-02-01T09:00:00")
    services.event_publisher.drain()

    r = client.get(f"{API}/families/{f}/dashboard/daily-stats", params={"year": 2024, "month": 2}, headers=h)
    assert r.status_code == 200
    data = r.json()["data"]
    days = data["dailyStats"]
    assert len(days) == 29
    assert days[0] == {"date": "2024-02-01", "income": 1000, "expense": 0}
    assert days[9]["expense"] == 150
    assert days[28]["expense"] == 30
    assert data["totalExpense"] == 180
    assert data["totalIncome"] == 1000
