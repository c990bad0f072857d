"""Shared pytest fixtures for vCloud CPI tests."""
import copy
import os
import sys

import pytest
import responses

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from vcd_responses import VCD_SETTINGS, FakeClock  # noqa: E402


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    """Raw CPI options for one vCD (deep copy, safe to mutate)."""
    return copy.deepcopy(VCD_SETTINGS)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client(settings, clock):
    """VCloudClient with a fake clock; no I/O until used."""
    from vcloud_cpi.client import VCloudClient

    return VCloudClient(settings, sleep=clock.sleep, clock=clock)


@pytest.fixture
def mock_responses():
    """Enable responses mock for HTTP requests."""
    with responses.RequestsMock() as rsps:
        yield rsps
