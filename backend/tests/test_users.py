API = "/api/v1"


def test_profile_defaults(client, register_user):
    user = register_user("pat")
    r = client.get(f"{API}/users/me/profile", headers=user["headers"])
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["userUuid"] == user["uuid"]
    assert data["timezone"] == "Asia/Seoul"
    assert data["language"] == "ko"
    assert data["currency"] == "KRW"
    assert data["defaultFamilyUuid"] is None


def test_update_profile_changes_only_given_fields(client, register_user):
    user = register_user("pat")
    r = client.put(f"{API}/users/me/profile", json={"timezone": "Europe/Berlin"}, headers=user["headers"])
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["timezone"] == "Europe/Berlin"
    assert data["language"] == "ko"

    r = client.put(f"{API}/users/me/profile", json={"language": "en", "currency": "EUR"}, headers=user["headers"])
    data = r.json()["data"]
    assert (data["timezone"], data["language"], data["currency"]) == ("Europe/Berlin", "en", "EUR")


def test_update_profile_rejects_unknown_timezone(client, register_user):
    user = register_user("pat")
    r = client.put(f"{API}/users/me/profile", json={"timezone": "Mars/Olympus"}, headers=user["headers"])
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == "C001"
    assert body["parameters"]["fieldName"] == "timezone"


def test_default_family_requires_membership(client, register_user, create_family):
    owner = register_user("owner")
    other = register_user("other")
    create_family(owner["headers"], name="One")
    second = create_family(owner["headers"], name="Two")

    r = client.put(f"{API}/users/me/default-family", json={"familyUuid": second["uuid"]}, headers=owner["headers"])
    assert r.status_code == 200
    assert r.json()["data"]["familyUuid"] == second["uuid"]
    r = client.get(f"{API}/users/me/default-family", headers=owner["headers"])
    assert r.json()["data"]["familyUuid"] == second["uuid"]

    r = client.put(f"{API}/users/me/default-family", json={"familyUuid": second["uuid"]}, headers=other["headers"])
    assert r.status_code == 403
    assert r.json()["code"] == "F003"

    r = client.put(f"{API}/users/me/default-family", json={"familyUuid": "bogus"}, headers=owner["headers"])
    assert r.status_code == 400
    assert r.json()["code"] == "C007"


def test_default_family_empty_without_families(client, register_user):
    user = register_user("lonely")
    r = client.get(f"{API}/users/me/default-family", headers=user["headers"])
    assert r.status_code == 200
    assert r.json()["data"] == {"familyUuid": ""}
