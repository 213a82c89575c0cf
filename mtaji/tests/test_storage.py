from __future__ import annotations

import pytest

from mtaji.errors import BlobStoreError
from mtaji.storage import LocalBlobStore, object_path, sanitize_filename


@pytest.mark.parametrize("name,expected", [
    ("photo.jpg", "photo.jpg"),
    ("my photo (1).jpg", "my_photo__1_.jpg"),
    ("../../etc/passwd", "passwd"),
    ("picha-ya-kisima.PNG", "picha-ya-kisima.PNG"),
    ("", "upload"),
])
def test_sanitize_filename(name, expected):
    assert sanitize_filename(name) == expected


def test_object_path_namespaced():
    assert object_path(7, "site plan.png", now_ms=1767225600000) == "7/1767225600000_site_plan.png"


class TestLocalBlobStore:
    def test_upload_writes_and_returns_url(self, tmp_path):
        store = LocalBlobStore(tmp_path, "http://cdn.test/blobs/", bucket="initiative-images")
        url = store.upload("7/1_a.png", b"\x89PNG")
        assert url == "http://cdn.test/blobs/initiative-images/7/1_a.png"
        assert (tmp_path / "initiative-images" / "7" / "1_a.png").read_bytes() == b"\x89PNG"

    def test_refuses_escape(self, tmp_path):
        store = LocalBlobStore(tmp_path, "http://cdn.test")
        with pytest.raises(BlobStoreError):
            store.upload("../outside.png", b"x")

    def test_from_settings(self, tmp_path):
        store = LocalBlobStore.from_settings()
        assert store.bucket == "initiative-images"
        assert store.root == tmp_path / "data" / "blobs"
