# conftest.py

import os
import tempfile
import uuid

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from customer_hub.identity.search_documents import refresh_search_document  # noqa: E402
from customer_hub.models import Customer, CustomerIdentity, IdentityProvider, db  # noqa: E402
from customer_hub.utils.logging_config import setup_logging  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    db_fd, temp_db = tempfile.mkstemp(suffix=f"_{uuid.uuid4().hex[:8]}.db")

    try:
        flask_app.config.update(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
                "SECRET_KEY": "test-secret-key-for-testing-only",
                "MONITORING_ENABLED": False,
                "ENABLE_FILE_LOGGING": False,
                "ENABLE_CONSOLE_LOGGING": True,
                "LOG_LEVEL": "DEBUG",
                "LOG_FORMAT": "text",
                "IDENTITY_VALIDATE_EMAILS": True,
                "SEARCH_CANDIDATE_LIMIT": 200,
                "SEARCH_DEFAULT_LIMIT": 20,
                "SEARCH_MAX_LIMIT": 100,
                "SEARCH_MIN_SCORE": 1.0,
                "SYNC_BATCH_SIZE": 50,
            }
        )
        setup_logging(flask_app)

        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            yield flask_app
            db.session.remove()
            db.drop_all()
    finally:
        try:
            os.close(db_fd)
        except OSError:
            pass
        try:
            if os.path.exists(temp_db):
                os.unlink(temp_db)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def make_customer(app):
    """
    Factory creating a committed customer with optional identities and its search document.

    Identities are given as ``(provider, external_id, email, phone)`` tuples.
    """

    def _factory(
        *,
        first_name=None,
        last_name=None,
        company=None,
        email=None,
        phone=None,
        is_vip=False,
        identities=(),
    ) -> Customer:
        customer = Customer(
            first_name=first_name,
            last_name=last_name,
            company=company,
            primary_email=email,
            primary_phone=phone,
            is_vip=is_vip,
        )
        db.session.add(customer)
        db.session.flush()
        for provider, external_id, identity_email, identity_phone in identities:
            db.session.add(
                CustomerIdentity(
                    customer_id=customer.id,
                    provider=IdentityProvider.coerce(provider),
                    external_id=external_id,
                    email=identity_email,
                    phone=identity_phone,
                )
            )
        db.session.flush()
        refresh_search_document(customer.id)
        db.session.commit()
        return customer

    return _factory
