API = "/api/v1"


def test_income_lifecycle(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"])
    category = first_category(owner["headers"], family["uuid"])

    r = client.post(f"{API}/families/{family['uuid']}/incomes",
                    json={"categoryUuid": category["uuid"], "amount": 3000000, "description": "salary",
                          "date": "2025-06-25T09:00:00"},
                    headers=owner["headers"])
    assert r.status_code == 201
    income = r.json()["data"]
    assert income["amount"] == 3000000
    assert income["category"]["name"] == category["name"]
    assert "excludeFromBudget" not in income

    r = client.put(f"{API}/families/{family['uuid']}/incomes/{income['uuid']}",
                   json={"amount": 3100000, "description": "salary + bonus"}, headers=owner["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["amount"] == 3100000
    assert r.json()["data"]["description"] == "salary + bonus"

    r = client.get(f"{API}/families/{family['uuid']}/incomes", headers=owner["headers"])
    page = r.json()["data"]
    assert page["totalElements"] == 1
    assert page["items"][0]["uuid"] == income["uuid"]

    r = client.delete(f"{API}/families/{family['uuid']}/incomes/{income['uuid']}", headers=owner["headers"])
    assert r.status_code == 200
    r = client.get(f"{API}/families/{family['uuid']}/incomes/{income['uuid']}", headers=owner["headers"])
    assert r.status_code == 404
    assert r.json()["code"] == "IC001"


def test_income_amount_must_be_positive(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"])
    category = first_category(owner["headers"], family["uuid"])
    r = client.post(f"{API}/families/{family['uuid']}/incomes",
                    json={"categoryUuid": category["uuid"], "amount": -5}, headers=owner["headers"])
    assert r.status_code == 400
    assert r.json()["code"] == "IC002"


def test_income_date_filter(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"])
    category = first_category(owner["headers"], family["uuid"])
    for day in ("2025-01-10", "2025-02-10", "2025-03-10"):
        client.post(f"{API}/families/{family['uuid']}/incomes",
                    json={"categoryUuid": category["uuid"], "amount": 10, "date": f"{day}T12:00:00"},
                    headers=owner["headers"])
    r = client.get(f"{API}/families/{family['uuid']}/incomes",
                   params={"startDate": "2025-02-01", "endDate": "2025-02-28T23:59:59Z"}, headers=owner["headers"])
    items = r.json()["data"]["items"]
    assert len(items) == 1
    assert items[0]["date"].startswith("2025-02-10")


def test_income_of_other_family_is_not_found(client, register_user, create_family, first_category):
    owner = register_user("owner")
    family = create_family(owner["headers"], name="A")
    other = create_family(owner["headers"], name="B")
    category = first_category(owner["headers"], family["uuid"])
    r = client.post(f"{API}/families/{family['uuid']}/incomes",
                    json={"categoryUuid": category["uuid"], "amount": 10}, headers=owner["headers"])
    income_uuid = r.json()["data"]["uuid"]
    r = client.delete(f"{API}/families/{other['uuid']}/incomes/{income_uuid}", headers=owner["headers"])
    assert r.status_code == 404
    assert r.json()["code"] == "IC001"
