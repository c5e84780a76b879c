from wonderworks.extensions import db
from wonderworks.models import Address


def address_body(**overrides):
    body = {
        "firstName": "Mona",
        "lastName": "Adel",
        "address1": "5 Garden St",
        "city": "Giza",
        "state": "Giza",
        "postalCode": "12511",
        "country": "Egypt",
    }
    body.update(overrides)
    return body


def default_ids(app, user_id):
    with app.app_context():
        return [
            address.id
            for address in db.session.execute(
                db.select(Address).filter_by(user_id=user_id, is_default=True)
            ).scalars()
        ]


def test_new_default_address_clears_previous_default(client, app, customer):
    headers = customer["headers"]
    first = client.post("/api/profile/addresses", json=address_body(isDefault=True), headers=headers)
    second = client.post(
        "/api/profile/addresses", json=address_body(address1="9 Tahrir Sq", isDefault=True), headers=headers
    )

    assert first.status_code == second.status_code == 201
    assert default_ids(app, customer["id"]) == [second.get_json()["id"]]


def test_updating_an_address_to_default_keeps_exactly_one(client, app, customer):
    headers = customer["headers"]
    first = client.post("/api/profile/addresses", json=address_body(isDefault=True), headers=headers).get_json()
    second = client.post("/api/profile/addresses", json=address_body(type="WORK"), headers=headers).get_json()
    assert second["isDefault"] is False
    assert second["type"] == "WORK"

    updated = client.put(
        f"/api/profile/addresses/{second['id']}", json={"isDefault": True}, headers=headers
    )

    assert updated.status_code == 200
    assert default_ids(app, customer["id"]) == [second["id"]]
    listed = client.get("/api/profile/addresses", headers=headers).get_json()
    assert [address["id"] for address in listed] == [second["id"], first["id"]]


def test_no_default_unless_requested(client, app, customer):
    client.post("/api/profile/addresses", json=address_body(), headers=customer["headers"])

    assert default_ids(app, customer["id"]) == []


def test_default_flag_is_scoped_to_each_user(client, app, customer, make_user, auth_headers):
    other_id = make_user(email="other@example.com")
    other_headers = auth_headers("other@example.com")
    client.post("/api/profile/addresses", json=address_body(isDefault=True), headers=other_headers)

    client.post("/api/profile/addresses", json=address_body(isDefault=True), headers=customer["headers"])

    assert len(default_ids(app, other_id)) == 1
    assert len(default_ids(app, customer["id"])) == 1


def test_address_validation(client, customer):
    headers = customer["headers"]
    missing = client.post("/api/profile/addresses", json={"firstName": "Mona"}, headers=headers)
    bad_type = client.post("/api/profile/addresses", json=address_body(type="BOAT"), headers=headers)

    assert missing.status_code == 400
    assert "lastName" in missing.get_json()["message"]
    assert bad_type.status_code == 400


def test_addresses_are_private(client, customer, make_user, auth_headers):
    created = client.post(
        "/api/profile/addresses", json=address_body(), headers=customer["headers"]
    ).get_json()
    make_user(email="other@example.com")
    other_headers = auth_headers("other@example.com")

    url = f"/api/profile/addresses/{created['id']}"
    assert client.put(url, json={"city": "Cairo"}, headers=other_headers).status_code == 404
    assert client.delete(url, headers=other_headers).status_code == 404
    assert client.delete(url, headers=customer["headers"]).status_code == 200
    assert client.get("/api/profile/addresses", headers=customer["headers"]).get_json() == []


def test_profile_read_and_update(client, customer, make_product):
    headers = customer["headers"]
    client.post("/api/wishlist", json={"productId": make_product()}, headers=headers)
    client.post("/api/profile/addresses", json=address_body(isDefault=True), headers=headers)

    profile = client.get("/api/profile", headers=headers).get_json()
    assert profile["user"]["email"] == customer["email"]
    assert profile["wishlistCount"] == 1
    assert profile["addresses"][0]["isDefault"] is True

    updated = client.put("/api/profile", json={"name": "Mona Adel"}, headers=headers)
    assert updated.get_json()["user"]["name"] == "Mona Adel"
