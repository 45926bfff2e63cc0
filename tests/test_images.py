"""
Image upload (file or URL) and retrieval.
"""
import pytest
import requests

import images
from conftest import auth_header


class FakeResponse:
    def __init__(self, content, content_type, status_code=200):
        self.content = content
        self.headers = {"content-type": content_type}
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_upload_file_and_fetch_back(client, admin):
    _, token = admin

    res = client.post("/api/images", files={"image": ("cake.png", b"\x89PNGdata", "image/png")},
                      headers=auth_header(token))

    assert res.status_code == 201
    data = res.json()["data"]
    assert data["mime_type"] == "image/png"
    assert data["size"] == 8
    assert data["filename"].endswith("-cake.png")

    fetched = client.get(f"/api/images/{data['id']}")
    assert fetched.status_code == 200
    assert fetched.content == b"\x89PNGdata"
    assert fetched.headers["content-type"] == "image/png"


def test_upload_rejects_other_types(client, admin):
    _, token = admin
    res = client.post("/api/images", files={"image": ("notes.txt", b"hello", "text/plain")},
                      headers=auth_header(token))
    assert res.status_code == 400
    assert res.json()["detail"] == "Only JPEG, PNG, or GIF images are allowed"


def test_upload_from_url(client, admin, monkeypatch):
    _, token = admin
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return FakeResponse(b"GIF89a", "image/gif")

    monkeypatch.setattr(images.requests, "get", fake_get)

    res = client.post("/api/images", data={"image_url": "https://cdn.example.com/cakes/party.gif"},
                      headers=auth_header(token))

    assert res.status_code == 201
    assert res.json()["data"]["filename"] == "party.gif"
    assert calls == ["https://cdn.example.com/cakes/party.gif"]


@pytest.mark.parametrize("url, content_type, message", [
    ("https://cdn.example.com/cake.bmp", "image/bmp", "Invalid image URL format"),
    ("https://cdn.example.com/cake.jpg", "text/html", "URL must point to a JPEG, PNG, or GIF image"),
])
def test_url_checks(client, admin, monkeypatch, url, content_type, message):
    _, token = admin
    monkeypatch.setattr(images.requests, "get", lambda url, timeout: FakeResponse(b"x", content_type))

    res = client.post("/api/images", data={"image_url": url}, headers=auth_header(token))

    assert res.status_code == 400
    assert res.json()["detail"] == message


def test_url_fetch_failure(client, admin, monkeypatch):
    _, token = admin
    monkeypatch.setattr(images.requests, "get", lambda url, timeout: FakeResponse(b"", "image/png", 404))

    res = client.post("/api/images", data={"image_url": "https://cdn.example.com/gone.png"},
                      headers=auth_header(token))

    assert res.status_code == 400
    assert res.json()["detail"].startswith("Could not fetch image")


def test_upload_needs_file_or_url(client, admin):
    _, token = admin
    res = client.post("/api/images", data={}, headers=auth_header(token))
    assert res.status_code == 400
    assert res.json()["detail"] == "Provide an image file or URL"


def test_unknown_image(client):
    res = client.get("/api/images/0123456789abcdef01234567")
    assert res.status_code == 404
