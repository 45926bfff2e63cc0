"""
Catalog entry CRUD and the explicit seed step.
"""
import pytest
from click.testing import CliRunner

import database
from conftest import auth_header
from seed import DEFAULT_SHAPES, DEFAULT_SPONGE_TYPES, seed_defaults
from seed import main as seed_command


def test_category_crud(client, admin):
    _, token = admin

    created = client.post("/api/categories", json={"name": "Wedding"}, headers=auth_header(token))
    assert created.status_code == 201
    category_id = created.json()["data"]["id"]

    dup = client.post("/api/categories", json={"name": "Wedding"}, headers=auth_header(token))
    assert dup.status_code == 400
    assert dup.json()["detail"] == "Category name already exists"

    res = client.put(f"/api/categories/{category_id}", json={"name": "Weddings"}, headers=auth_header(token))
    assert res.json()["data"]["name"] == "Weddings"

    listed = client.get("/api/categories", headers=auth_header(token)).json()["data"]
    assert [c["name"] for c in listed] == ["Weddings"]

    assert client.delete(f"/api/categories/{category_id}", headers=auth_header(token)).status_code == 200
    missing = client.delete(f"/api/categories/{category_id}", headers=auth_header(token))
    assert missing.status_code == 404


def test_rename_onto_existing_name(client, admin):
    _, token = admin
    client.post("/api/flavors", json={"name": "Mango"}, headers=auth_header(token))
    other = client.post("/api/flavors", json={"name": "Lychee"}, headers=auth_header(token)).json()["data"]

    res = client.put(f"/api/flavors/{other['id']}", json={"name": "Mango"}, headers=auth_header(token))

    assert res.status_code == 400
    assert res.json()["detail"] == "Flavor name already exists"


@pytest.mark.parametrize("name, status", [("1.5kg", 201), ("Custom", 201), ("Large", 400)])
def test_size_name_format(client, admin, name, status):
    _, token = admin
    res = client.post("/api/sizes", json={"name": name}, headers=auth_header(token))
    assert res.status_code == status


def test_writes_require_admin(client, user):
    _, token = user
    res = client.post("/api/tags", json={"name": "New"}, headers=auth_header(token))
    assert res.status_code == 403
    assert res.json()["detail"] == "Access denied. Admin only."


def test_malformed_id(client, admin):
    _, token = admin
    res = client.put("/api/shapes/123", json={"name": "Star"}, headers=auth_header(token))
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid shape ID format"


def test_listing_sponge_types_never_seeds(client, db, user):
    _, token = user
    res = client.get("/api/sponge-types", headers=auth_header(token))
    assert res.json()["data"] == []
    assert db["spongetype"].count_documents({}) == 0


def test_seed_is_idempotent(db):
    first = seed_defaults(db)
    second = seed_defaults(db)

    assert first == {"spongetype": len(DEFAULT_SPONGE_TYPES), "shape": len(DEFAULT_SHAPES)}
    assert second == {"spongetype": 0, "shape": 0}
    assert db["shape"].count_documents({}) == len(DEFAULT_SHAPES)


def test_seed_keeps_existing_entries(db):
    db["spongetype"].insert_one({"name": "Vanilla", "description": "House recipe"})

    counts = seed_defaults(db)

    assert counts["spongetype"] == len(DEFAULT_SPONGE_TYPES) - 1
    assert db["spongetype"].find_one({"name": "Vanilla"})["description"] == "House recipe"


def test_seed_command(db, monkeypatch):
    monkeypatch.setattr(database, "db", db)

    result = CliRunner().invoke(seed_command)

    assert result.exit_code == 0
    assert "PASS shape: 5 inserted" in result.output
    assert db["spongetype"].count_documents({}) == len(DEFAULT_SPONGE_TYPES)


def test_seed_command_without_database(monkeypatch):
    monkeypatch.setattr(database, "db", None)

    result = CliRunner().invoke(seed_command)

    assert result.exit_code == 1
    assert "DATABASE_URL and DATABASE_NAME must be set" in result.output
