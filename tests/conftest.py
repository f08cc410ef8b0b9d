import sys
from pathlib import Path
from typing import Generator

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app import create_app
from seed import DEMO_PASSWORD, seed_directory


@pytest.fixture
def app() -> Generator:
    application = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key-for-signing-login-tokens',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    })
    with application.app_context():
        seed_directory()
    yield application


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Return a function producing Authorization headers for a demo user."""

    def _login(email: str = 'admin@vertex.edu') -> dict:
        response = client.post('/api/auth/login', json={'email': email, 'password': DEMO_PASSWORD})
        assert response.status_code == 200, response.get_json()
        return {'Authorization': f"Bearer {response.get_json()['token']}"}

    return _login


@pytest.fixture
def admin_headers(login):
    return login('admin@vertex.edu')
