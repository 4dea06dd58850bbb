import pytest

from tests.fakes import FakeGitHub, FakeStore


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def store():
    return FakeStore()
