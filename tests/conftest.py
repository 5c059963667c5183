import pytest

from app import create_app
from app.config import TestConfig
from app.extensions import db
from app.models import User


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig)
    app.config.update(
        IMPORT_STORAGE_DIR=str(tmp_path / "storage"),
        IMPORT_TEMP_DIR=str(tmp_path / "temp" / "imports"),
        IMPORT_UPLOAD_DIR=str(tmp_path / "temp" / "uploads"),
    )
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_id(app):
    with app.app_context():
        user = User(username="importer")
        db.session.add(user)
        db.session.commit()
        return user.id
