import pytest

from mysql_sampler.models import Instance
from mysql_sampler.utils import InstanceConfig


@pytest.fixture
def make_instance():
    """Build an Instance with the given config overrides."""

    def _make(**overrides):
        values = {"name": "main", "alias": "db1", "host": "10.0.0.5", "user": "monitor", "password": "secret"}
        values.update(overrides)
        return Instance(config=InstanceConfig(**values))

    return _make
