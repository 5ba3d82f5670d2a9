import pytest

from clat.config import ClatConfig


@pytest.fixture
def config():
    return ClatConfig(v4_conncheck_enable=False)
