import base64
from io import BytesIO
from urllib.parse import quote

import pytest
from PIL import Image

from backend.qrtrack.utils import tracking_url


def png_data_url(size=(400, 300), color=(200, 30, 30)):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


def create(client, headers, **payload):
    payload.setdefault("type", "url")
    payload.setdefault("content", "https://example.com")
    return client.post("/api/qrcodes/", json=payload, headers=headers)


def test_create_and_list_own_codes(client, login):
    alice = login("alice")
    bob = login("bob")
    r = create(client, alice, content="https://example.com/a b")
    assert r.status_code == 200
    qr = r.json()
    assert qr["type"] == "url"
    assert qr["folder_id"] is None
    assert qr["tracking_url"].endswith(f"/api/qrcodes/{qr['id']}/scan?content={quote('https://example.com/a b', safe='')}")

    create(client, bob, content="hello", type="text")
    mine = client.get("/api/qrcodes/", headers=alice).json()
    assert [q["id"] for q in mine] == [qr["id"]]


def test_create_requires_authentication(client):
    assert client.post("/api/qrcodes/", json={"content": "x", "type": "text"}).status_code == 401


@pytest.mark.parametrize("payload", [
    {"content": "", "type": "text"},
    {"content": "   ", "type": "text"},
    {"content": "javascript:alert(1)", "type": "url"},
    {"content": "ftp://example.com", "type": "url"},
    {"content": "not-an-email", "type": "email"},
    {"content": "call me", "type": "phone"},
    {"content": "hello", "type": "sms"},
])
def test_invalid_content_is_rejected(client, login, payload):
    assert client.post("/api/qrcodes/", json=payload, headers=login()).status_code == 422


@pytest.mark.parametrize("payload", [
    {"content": "someone@example.com", "type": "email"},
    {"content": "+1 (555) 010-9999", "type": "phone"},
    {"content": "any text at all", "type": "text"},
])
def test_valid_non_url_content(client, login, payload):
    assert client.post("/api/qrcodes/", json=payload, headers=login()).status_code == 200


def test_tracking_url_encodes_content():
    url = tracking_url("http://host/", 7, "a&b=c d/é")
    assert url == "http://host/api/qrcodes/7/scan?content=a%26b%3Dc%20d%2F%C3%A9"


def test_public_base_url_setting(client, login, monkeypatch):
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://qr.example.org")
    qr = create(client, login()).json()
    assert qr["tracking_url"].startswith(f"https://qr.example.org/api/qrcodes/{qr['id']}/scan?content=")


def test_owner_checks_on_single_code(client, login):
    alice = login("alice")
    bob = login("bob")
    qr = create(client, alice).json()

    assert client.get(f"/api/qrcodes/{qr['id']}", headers=alice).status_code == 200
    assert client.get(f"/api/qrcodes/{qr['id']}", headers=bob).status_code == 403
    assert client.patch(f"/api/qrcodes/{qr['id']}", json={"content": "https://x.example"}, headers=bob).status_code == 403
    assert client.delete(f"/api/qrcodes/{qr['id']}", headers=bob).status_code == 403
    assert client.get("/api/qrcodes/999", headers=alice).status_code == 404


def test_move_code_between_folders(client, login):
    headers = login()
    work = client.post("/api/folders/", json={"name": "Work"}, headers=headers).json()
    home = client.post("/api/folders/", json={"name": "Home"}, headers=headers).json()
    qr = create(client, headers, folder_id=work["id"]).json()
    assert qr["folder_id"] == work["id"]

    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"folder_id": home["id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["folder_id"] == home["id"]
    in_home = client.get("/api/qrcodes/", params={"folder_id": home["id"]}, headers=headers).json()
    assert [q["id"] for q in in_home] == [qr["id"]]
    assert client.get("/api/qrcodes/", params={"folder_id": work["id"]}, headers=headers).json() == []

    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"folder_id": None}, headers=headers)
    assert r.json()["folder_id"] is None
    # content untouched by a folder move
    assert r.json()["content"] == "https://example.com"


def test_cannot_file_into_someone_elses_folder(client, login):
    alice = login("alice")
    bob = login("bob")
    bobs = client.post("/api/folders/", json={"name": "Bob's"}, headers=bob).json()
    assert create(client, alice, folder_id=bobs["id"]).status_code == 403
    qr = create(client, alice).json()
    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"folder_id": bobs["id"]}, headers=alice)
    assert r.status_code == 403
    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"folder_id": 9999}, headers=alice)
    assert r.status_code == 404


def test_update_validates_content_against_type(client, login):
    headers = login()
    qr = create(client, headers, content="hello", type="text").json()
    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"type": "email"}, headers=headers)
    assert r.status_code == 400
    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"type": "email", "content": "a@b.co"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["type"] == "email"


def test_delete_keeps_scan_history(client, storage, login):
    headers = login()
    qr = create(client, headers).json()
    client.get(f"/api/qrcodes/{qr['id']}/scan", params={"content": qr["content"]}, follow_redirects=False)

    assert client.delete(f"/api/qrcodes/{qr['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/qrcodes/{qr['id']}", headers=headers).status_code == 404
    assert len(storage.list_scans(qr["id"])) == 1
    # a deleted code no longer resolves, and no new scan is recorded
    r = client.get(f"/api/qrcodes/{qr['id']}/scan", params={"content": qr["content"]}, follow_redirects=False)
    assert r.status_code == 404
    assert len(storage.list_scans(qr["id"])) == 1


def test_logo_is_processed_on_create(client, login):
    qr = create(client, login(), logo=png_data_url()).json()
    assert qr["logo"].startswith("data:image/png;base64,")
    img = Image.open(BytesIO(base64.b64decode(qr["logo"].split(",", 1)[1])))
    assert img.mode == "L"
    assert img.size == (200, 150)


@pytest.mark.parametrize("logo", [
    "data:image/png;base64,bm90IGFuIGltYWdl",
    "data:image/png;base64",
])
def test_bad_logo_is_400(client, storage, login, logo):
    headers = login()
    r = create(client, headers, logo=logo)
    assert r.status_code == 400
    assert client.get("/api/qrcodes/", headers=headers).json() == []


def test_bad_logo_on_update_is_400(client, login):
    headers = login()
    qr = create(client, headers).json()
    r = client.patch(f"/api/qrcodes/{qr['id']}", json={"logo": "data:image/png;base64"}, headers=headers)
    assert r.status_code == 400


def test_image_endpoint(client, login):
    headers = login()
    qr = create(client, headers).json()
    r = client.get(f"/api/qrcodes/{qr['id']}/image", params={"size": 200}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert Image.open(BytesIO(r.content)).size[0] > 0

    r = client.get(f"/api/qrcodes/{qr['id']}/image", params={"format": "svg"}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("image/svg+xml")
    assert b"<svg" in r.content
