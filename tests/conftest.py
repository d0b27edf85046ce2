from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from printshop.app import create_app
from printshop.auth import hash_password
from printshop.config import Settings

ADMIN_PASSWORD = "hunter2"


def make_settings(tmp_path: Path, **overrides) -> Settings:
    settings = Settings(
        secret_key="test-secret",
        stripe_secret_key="sk_test_dummy",
        stripe_publishable_key="pk_test_dummy",
        stripe_webhook_secret="whsec_test_secret",
        site_url="http://shop.test",
        admin_password_hash=hash_password(ADMIN_PASSWORD),
        gallery_dir=str(tmp_path / "gallery"),
        gallery_prefix="prints/",
        public_url="",
        currency="usd",
        log_level="WARNING",
        max_upload_mb=5,
    )
    return settings.with_overrides(**overrides) if overrides else settings


def jpeg_bytes(size=(64, 48), color=(180, 40, 40)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, "JPEG")
    return buf.getvalue()


def write_image(path: Path, size=(64, 48)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(jpeg_bytes(size))
    return path


@pytest.fixture
def gallery_dir(tmp_path):
    root = tmp_path / "gallery"
    write_image(root / "prints" / "Cliff_Edge_01.jpg")
    write_image(root / "prints" / "Desert_Dunes.png")
    return root


@pytest.fixture
def app(tmp_path, gallery_dir):
    app = create_app(make_settings(tmp_path))
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
