"""Avatar upload, normalisation and public retrieval."""

import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from taskkeep import app as app_module
from taskkeep.service.avatars import normalize_avatar
from taskkeep.service.errors import ValidationError


def _image_bytes(fmt: str = "PNG", size=(640, 480)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def client():
    return TestClient(app_module.app)


@pytest.fixture
def account(client):
    data = client.post(
        "/v1/users",
        json={"name": "Alice", "email": "alice@example.com", "password": "longenough1"},
    ).json()["data"]
    return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}


class TestNormalizeAvatar:
    def test_resizes_to_square_png(self):
        result = normalize_avatar("me.jpg", _image_bytes("JPEG"), size=250)

        with Image.open(io.BytesIO(result)) as image:
            assert image.format == "PNG"
            assert image.size == (250, 250)

    @pytest.mark.parametrize("filename", ["me.gif", "me.pdf", "me", None])
    def test_rejects_extensions(self, filename):
        with pytest.raises(ValidationError) as exc:
            normalize_avatar(filename, _image_bytes())
        assert exc.value.field == "avatar"

    def test_rejects_non_image(self):
        with pytest.raises(ValidationError):
            normalize_avatar("me.png", b"definitely not an image")

    def test_rejects_oversized(self):
        with pytest.raises(ValidationError):
            normalize_avatar("me.png", _image_bytes(), max_bytes=10)

    def test_rejects_disallowed_format_behind_allowed_extension(self):
        with pytest.raises(ValidationError):
            normalize_avatar("me.png", _image_bytes("GIF"))


class TestAvatarRoutes:
    def test_upload_fetch_delete(self, client, account):
        user_id, headers = account

        upload = client.post(
            "/v1/users/me/avatar",
            files={"avatar": ("me.png", _image_bytes(), "image/png")},
            headers=headers,
        )
        assert upload.status_code == 200
        assert upload.json()["data"]["has_avatar"] is True

        fetched = client.get(f"/v1/users/{user_id}/avatar")
        assert fetched.status_code == 200
        assert fetched.headers["content-type"] == "image/png"
        with Image.open(io.BytesIO(fetched.content)) as image:
            assert image.size == (250, 250)

        removed = client.delete("/v1/users/me/avatar", headers=headers)
        assert removed.json()["data"]["has_avatar"] is False
        assert client.get(f"/v1/users/{user_id}/avatar").status_code == 404

    def test_upload_requires_auth(self, client):
        response = client.post(
            "/v1/users/me/avatar",
            files={"avatar": ("me.png", _image_bytes(), "image/png")},
        )
        assert response.status_code == 401

    def test_upload_rejects_bad_file(self, client, account):
        _, headers = account
        response = client.post(
            "/v1/users/me/avatar",
            files={"avatar": ("notes.txt", b"hello", "text/plain")},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "avatar"

    def test_upload_too_large(self, client, account, monkeypatch):
        from taskkeep.service.runtime import get_runtime

        _, headers = account
        monkeypatch.setattr(get_runtime().settings, "avatar_max_bytes", 100)
        response = client.post(
            "/v1/users/me/avatar",
            files={"avatar": ("me.png", _image_bytes(), "image/png")},
            headers=headers,
        )
        assert response.status_code == 413

    def test_unknown_user_avatar(self, client):
        assert client.get("/v1/users/nobody/avatar").status_code == 404
