"""
Shared fixtures.
"""

import pytest

from tests.models import Base, User, engine, repo as test_repo


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def repo():
    return test_repo


@pytest.fixture
def user():
    """A persisted user."""
    return User.insert_or_raise({"email": "test@example.com", "name": "Test"})


@pytest.fixture
def other_user():
    return User.insert_or_raise({"email": "other@example.com", "name": "Other"})


@pytest.fixture
def post(user):
    return User.insert_posts_or_raise(user, {"title": "Hello World", "slug": "hello-world"})

