"""Shared fixtures.

Pulumi mocks are installed at import time so every resource declared by a
test is answered by ``GatewayMocks`` instead of a real engine.
"""

import pulumi
import pytest

from pulumi_mocks import AVAILABLE_ZONES, MOCKS, GatewayMocks

pulumi.runtime.set_mocks(MOCKS, project="private-http-gateway", stack="test", preview=False)


@pytest.fixture
def mocks() -> GatewayMocks:
    return MOCKS


@pytest.fixture
def available_zones() -> list[str]:
    return list(AVAILABLE_ZONES)
