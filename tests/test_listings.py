from bson import ObjectId

import listings
from conftest import auth_headers, insert_user, listing_payload, make_listing


def test_paginate_last_page():
    assert listings.paginate(25, 3, 12) == {
        "currentPage": 3,
        "totalPages": 3,
        "totalListings": 25,
        "hasNextPage": False,
        "hasPreviousPage": True,
    }


def test_paginate_empty():
    page = listings.paginate(0, 1, 12)
    assert page["totalPages"] == 0
    assert not page["hasNextPage"]
    assert not page["hasPreviousPage"]


def test_search_pages_through_results(client, db, host):
    for n in range(25):
        make_listing(db, host, title=f"Flat {n}")

    first = client.get("/listings").json()
    assert len(first["listings"]) == 12
    assert first["pagination"]["totalPages"] == 3
    assert first["pagination"]["hasNextPage"] is True
    assert first["pagination"]["hasPreviousPage"] is False

    last = client.get("/listings", params={"page": 3, "limit": 12}).json()
    assert len(last["listings"]) == 1
    assert last["listings"][0]["title"] == "Flat 0"
    assert last["pagination"]["hasNextPage"] is False
    assert last["pagination"]["hasPreviousPage"] is True


def test_search_filters(client, db, host):
    make_listing(db, host, title="A", price=80, maxGuests=2, propertyType="studio")
    make_listing(db, host, title="B", price=200, maxGuests=6, propertyType="house",
                 location={"address": "5 Elm", "city": "San Francisco", "state": "CA",
                           "country": "USA", "zipCode": "94110"})
    make_listing(db, host, title="C", price=120, maxGuests=4, propertyType="apartment")

    def titles(**params):
        return sorted(l["title"] for l in client.get("/listings", params=params).json()["listings"])

    assert titles(city="portl") == ["A", "C"]
    assert titles(city="SAN FRAN") == ["B"]
    assert titles(minPrice=100) == ["B", "C"]
    assert titles(minPrice=100, maxPrice=150) == ["C"]
    assert titles(guests=4) == ["B", "C"]
    assert titles(propertyType="studio") == ["A"]
    assert titles(city="(") == []


def test_search_rejects_bad_query(client):
    assert client.get("/listings", params={"limit": 51}).status_code == 400
    assert client.get("/listings", params={"page": 0}).status_code == 400
    assert client.get("/listings", params={"propertyType": "castle"}).status_code == 400
    resp = client.get("/listings", params={"minPrice": 300, "maxPrice": 100})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "minPrice"


def test_search_includes_host_summary(client, listing, host):
    found = client.get("/listings").json()["listings"][0]
    assert found["host"]["id"] == host.id
    assert found["host"]["name"] == host.name
    assert "passwordHash" not in found["host"]


def test_inactive_listing_is_hidden(client, db, listing):
    db["listing"].update_one({"_id": ObjectId(listing["id"])}, {"$set": {"is_active": False}})
    assert client.get("/listings").json()["listings"] == []
    resp = client.get(f"/listings/{listing['id']}")
    assert resp.status_code == 404
    assert resp.json()["message"] == "Listing is not available"


def test_get_listing(client, listing):
    resp = client.get(f"/listings/{listing['id']}")
    assert resp.status_code == 200
    data = resp.json()["listing"]
    assert data["location"]["zipCode"] == "97201"
    assert data["rating"] == {"average": 0, "count": 0}
    assert client.get("/listings/bad-id").status_code == 400
    assert client.get(f"/listings/{ObjectId()}").status_code == 404


def test_host_creates_listing(client, host):
    body = listing_payload(images=[{"url": "/uploads/listings/a.jpg"}],
                           availability={"blockedDates": ["2030-01-01"]})
    resp = client.post("/listings", json=body, headers=auth_headers(host))
    assert resp.status_code == 201
    created = resp.json()["listing"]
    assert created["host"]["id"] == host.id
    assert created["images"] == [{"url": "/uploads/listings/a.jpg", "caption": ""}]
    assert created["availability"]["blockedDates"] == ["2030-01-01"]
    assert created["isActive"] is True


def test_guest_cannot_create_listing(client, guest):
    resp = client.post("/listings", json=listing_payload(), headers=auth_headers(guest))
    assert resp.status_code == 403


def test_create_listing_validation(client, host):
    body = listing_payload(price=-1, amenities=["Helipad"], propertyType="castle")
    resp = client.post("/listings", json=body, headers=auth_headers(host))
    assert resp.status_code == 400
    fields = {e["field"] for e in resp.json()["errors"]}
    assert {"price", "amenities.0", "propertyType"} <= fields


def test_update_merges_fields_and_appends_images(client, db, host):
    listing = make_listing(db, host, images=[{"url": "/a.jpg"}])
    resp = client.put(
        f"/listings/{listing['id']}",
        json={"price": 175, "images": [{"url": "/b.jpg", "caption": "Kitchen"}]},
        headers=auth_headers(host),
    )
    assert resp.status_code == 200
    updated = resp.json()["listing"]
    assert updated["price"] == 175
    assert updated["title"] == listing["title"]
    assert [img["url"] for img in updated["images"]] == ["/a.jpg", "/b.jpg"]


def test_only_owner_can_update_or_delete(client, db, listing):
    other_host = insert_user(db, "Olga Other", "olga@example.com", "host")
    headers = auth_headers(other_host)
    assert client.put(f"/listings/{listing['id']}", json={"price": 1}, headers=headers).status_code == 403
    assert client.delete(f"/listings/{listing['id']}", headers=headers).status_code == 403
    assert db["listing"].find_one({"_id": ObjectId(listing["id"])})["price"] == 150


def test_rating_cannot_be_set_through_update(client, host, listing):
    resp = client.put(f"/listings/{listing['id']}", json={"rating": {"average": 5, "count": 100}},
                      headers=auth_headers(host))
    assert resp.status_code == 200
    assert resp.json()["listing"]["rating"] == {"average": 0, "count": 0}


def test_owner_deletes_listing(client, db, host, listing):
    resp = client.delete(f"/listings/{listing['id']}", headers=auth_headers(host))
    assert resp.status_code == 200
    assert db["listing"].count_documents({}) == 0


def test_my_listings(client, db, host, guest):
    make_listing(db, host, title="First")
    make_listing(db, host, title="Second")
    resp = client.get("/listings/host/my-listings", headers=auth_headers(host))
    assert [l["title"] for l in resp.json()["listings"]] == ["Second", "First"]
    assert client.get("/listings/host/my-listings", headers=auth_headers(guest)).status_code == 403
