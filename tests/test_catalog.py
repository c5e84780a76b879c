from wonderworks.extensions import db
from wonderworks.models import Product


def test_categories_are_listed_by_name(client, make_category):
    make_category(name="Stationary", slug="stationary")
    make_category(name="Home Decor", slug="decor")

    names = [category["name"] for category in client.get("/api/categories").get_json()]

    assert names == ["Home Decor", "Stationary"]


def test_create_category_requires_admin_and_rejects_duplicates(client, customer, admin):
    body = {"name": "  Toys   &  Games ", "description": "Fun for all ages"}

    assert client.post("/api/categories", json=body).status_code == 401
    assert client.post("/api/categories", json=body, headers=customer["headers"]).status_code == 403

    created = client.post("/api/categories", json=body, headers=admin["headers"])
    assert created.status_code == 201
    assert created.get_json()["name"] == "Toys & Games"
    assert created.get_json()["slug"] == "toys-games"

    duplicate = client.post("/api/categories", json={"name": "toys & games"}, headers=admin["headers"])
    assert duplicate.status_code == 409
    assert client.post("/api/categories", json={"name": "   "}, headers=admin["headers"]).status_code == 400


def test_product_list_hides_archived_and_filters(client, make_category, make_product):
    toys = make_category(name="Toys & Games", slug="toys-games")
    decor = make_category(name="Home Decor", slug="decor")
    puzzle = make_product(name="Wooden Puzzle", category_id=toys, featured=True)
    make_product(name="Canvas Print", category_id=decor)
    make_product(name="Old Puzzle", category_id=toys, archived=True)

    listed = client.get("/api/products").get_json()
    assert [product["name"] for product in listed] == ["Wooden Puzzle", "Canvas Print"]

    by_slug = client.get("/api/products?category=toys-games").get_json()
    assert [product["id"] for product in by_slug] == [puzzle]
    by_id = client.get(f"/api/products?category={decor}").get_json()
    assert [product["name"] for product in by_id] == ["Canvas Print"]

    featured = client.get("/api/products?featured=true").get_json()
    assert [product["id"] for product in featured] == [puzzle]

    searched = client.get("/api/products?search=canvas").get_json()
    assert [product["name"] for product in searched] == ["Canvas Print"]


def test_product_detail(client, make_product):
    product_id = make_product(images=["https://cdn.test/a.png", "https://cdn.test/b.png"])

    detail = client.get(f"/api/products/{product_id}")

    assert detail.status_code == 200
    assert [image["url"] for image in detail.get_json()["images"]] == [
        "https://cdn.test/a.png",
        "https://cdn.test/b.png",
    ]
    assert client.get("/api/products/abc").status_code == 400
    assert client.get("/api/products/9999").status_code == 404


def test_admin_creates_and_updates_product(client, admin, customer, make_category):
    category_id = make_category()
    body = {
        "name": "Stacking Rings",
        "price": 12.5,
        "categoryId": category_id,
        "images": ["https://cdn.test/1.png", "https://cdn.test/2.png"],
        "featured": True,
    }

    assert client.post("/api/products", json=body, headers=customer["headers"]).status_code == 403

    created = client.post("/api/products", json=body, headers=admin["headers"])
    assert created.status_code == 201
    product = created.get_json()
    assert product["image"] == "https://cdn.test/1.png"
    assert product["featured"] is True
    assert len(product["images"]) == 2

    update = dict(body, price=15, images=["https://cdn.test/3.png"])
    updated = client.put(f"/api/products/{product['id']}", json=update, headers=admin["headers"])
    assert updated.status_code == 200
    assert updated.get_json()["price"] == 15
    assert [image["url"] for image in updated.get_json()["images"]] == ["https://cdn.test/3.png"]
    assert updated.get_json()["image"] == "https://cdn.test/3.png"


def test_product_validation(client, admin, make_category):
    category_id = make_category()

    missing = client.post("/api/products", json={"price": 5}, headers=admin["headers"])
    free = client.post(
        "/api/products", json={"name": "Free", "price": 0, "categoryId": category_id}, headers=admin["headers"]
    )
    orphan = client.post(
        "/api/products", json={"name": "Orphan", "price": 5, "categoryId": 999}, headers=admin["headers"]
    )

    assert missing.status_code == 400
    assert free.status_code == 400
    assert orphan.status_code == 400
    assert orphan.get_json()["message"] == "Category does not exist"


def test_delete_product_blocked_once_ordered(client, app, admin, customer, make_product, place_order):
    ordered = make_product(name="Ordered")
    unsold = make_product(name="Unsold")
    place_order(customer["headers"], [(ordered, 1)])

    blocked = client.delete(f"/api/products/{ordered}", headers=admin["headers"])
    removed = client.delete(f"/api/products/{unsold}", headers=admin["headers"])

    assert blocked.status_code == 409
    assert removed.status_code == 200
    with app.app_context():
        assert db.session.get(Product, ordered) is not None
        assert db.session.get(Product, unsold) is None


def test_reviews_recompute_rating(client, app, make_user, auth_headers, make_product):
    product_id = make_product()
    make_user(email="first@example.com", name="First")
    make_user(email="second@example.com", name="Second")

    first = client.post(
        f"/api/products/{product_id}/reviews",
        json={"rating": 4, "comment": "Nice"},
        headers=auth_headers("first@example.com"),
    )
    second = client.post(
        f"/api/products/{product_id}/reviews",
        json={"rating": 5},
        headers=auth_headers("second@example.com"),
    )

    assert first.status_code == 201
    assert first.get_json()["author"] == "First"
    assert second.status_code == 201
    with app.app_context():
        assert db.session.get(Product, product_id).rating == 4.5

    reviews = client.get(f"/api/products/{product_id}/reviews").get_json()
    assert len(reviews) == 2
    assert {review["rating"] for review in reviews} == {4, 5}


def test_review_rules(client, customer, make_product):
    product_id = make_product()
    url = f"/api/products/{product_id}/reviews"

    assert client.post(url, json={"rating": 3}).status_code == 401
    assert client.post(url, json={"rating": 6}, headers=customer["headers"]).status_code == 400
    assert client.post(url, json={"rating": 0}, headers=customer["headers"]).status_code == 400
    assert (
        client.post("/api/products/9999/reviews", json={"rating": 3}, headers=customer["headers"]).status_code
        == 404
    )

    assert client.post(url, json={"rating": 3}, headers=customer["headers"]).status_code == 201
    duplicate = client.post(url, json={"rating": 5}, headers=customer["headers"])
    assert duplicate.status_code == 409
