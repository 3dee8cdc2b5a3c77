from models import Review, Tour


def post_review(client, headers, tour_id, rating=4, text="Great trip"):
    return client.post(
        f"/api/v1/tours/{tour_id}/reviews",
        json={"review": text, "rating": rating},
        headers=headers,
    )


def test_reviews_require_login(client):
    assert client.get("/api/v1/reviews").status_code == 401


def test_create_nested_review_fills_tour_and_user(client, make_user, make_tour, auth_header):
    user = make_user()
    tour = make_tour()
    res = post_review(client, auth_header(user), tour["_id"])
    assert res.status_code == 201
    data = res.json()["data"]["data"]
    assert data["tour"] == str(tour["_id"])
    assert data["user"] == str(user["_id"])


def test_only_users_can_post_reviews(client, make_user, make_tour, auth_header):
    admin = make_user(role="admin")
    tour = make_tour()
    assert post_review(client, auth_header(admin), tour["_id"]).status_code == 403


def test_top_level_review_needs_tour(client, make_user, auth_header):
    user = make_user()
    res = client.post("/api/v1/reviews", json={"review": "No tour", "rating": 3}, headers=auth_header(user))
    assert res.status_code == 400


def test_rating_out_of_range(client, make_user, make_tour, auth_header):
    user = make_user()
    tour = make_tour()
    assert post_review(client, auth_header(user), tour["_id"], rating=6).status_code == 400


def test_ratings_are_recomputed_on_create(client, make_user, make_tour, auth_header):
    tour = make_tour()
    post_review(client, auth_header(make_user()), tour["_id"], rating=5)
    post_review(client, auth_header(make_user()), tour["_id"], rating=4)
    post_review(client, auth_header(make_user()), tour["_id"], rating=4)
    stored = Tour.collection().find_one({"_id": tour["_id"]})
    assert stored["ratings_quantity"] == 3
    assert stored["ratings_average"] == 4.3


def test_ratings_are_recomputed_on_update(client, make_user, make_tour, auth_header):
    user = make_user()
    tour = make_tour()
    review_id = post_review(client, auth_header(user), tour["_id"], rating=2).json()["data"]["data"]["id"]
    res = client.patch(f"/api/v1/reviews/{review_id}", json={"rating": 5}, headers=auth_header(user))
    assert res.status_code == 200
    assert Tour.collection().find_one({"_id": tour["_id"]})["ratings_average"] == 5


def test_ratings_reset_when_last_review_deleted(client, make_user, make_tour, auth_header):
    user = make_user()
    tour = make_tour()
    review_id = post_review(client, auth_header(user), tour["_id"], rating=1).json()["data"]["data"]["id"]
    res = client.delete(f"/api/v1/reviews/{review_id}", headers=auth_header(user))
    assert res.status_code == 204
    stored = Tour.collection().find_one({"_id": tour["_id"]})
    assert stored["ratings_quantity"] == 0
    assert stored["ratings_average"] == 4.5


def test_nested_list_is_scoped_to_tour(client, make_user, make_tour, auth_header):
    user = make_user()
    first, second = make_tour(), make_tour()
    post_review(client, auth_header(user), first["_id"])
    post_review(client, auth_header(user), second["_id"])
    res = client.get(f"/api/v1/tours/{first['_id']}/reviews", headers=auth_header(user))
    assert res.status_code == 200
    assert res.json()["results"] == 1
    assert client.get("/api/v1/reviews", headers=auth_header(user)).json()["results"] == 2


def test_review_text_is_escaped(client, make_user, make_tour, auth_header):
    user = make_user()
    tour = make_tour()
    post_review(client, auth_header(user), tour["_id"], text="<script>alert(1)</script>")
    stored = Review.collection().find_one({})
    assert stored["review"] == "&lt;script&gt;alert(1)&lt;/script&gt;"


def test_update_review_rejects_null_rating(client, make_user, make_tour, auth_header):
    user = make_user()
    tour = make_tour()
    review_id = post_review(client, auth_header(user), tour["_id"], rating=4).json()["data"]["data"]["id"]
    res = client.patch(f"/api/v1/reviews/{review_id}", json={"rating": None}, headers=auth_header(user))
    assert res.status_code == 400
    assert Review.collection().find_one({})["rating"] == 4
    assert Tour.collection().find_one({"_id": tour["_id"]})["ratings_average"] == 4


def test_average_ignores_reviews_without_rating(make_user, make_tour):
    tour = make_tour()
    Review.collection().insert_one({"review": "legacy", "rating": None, "tour": tour["_id"]})
    Review.calc_average_ratings(tour["_id"])
    stored = Tour.collection().find_one({"_id": tour["_id"]})
    assert stored["ratings_quantity"] == 0
    assert stored["ratings_average"] == 4.5
