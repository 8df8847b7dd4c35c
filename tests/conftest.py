from __future__ import annotations

import pytest

from autoinit import AutoInitiative
from campaign import Campaign
from tests._support.table_helpers import FixedDie


@pytest.fixture
def campaign() -> Campaign:
    c = Campaign()
    c.random_integer = FixedDie(10)
    return c


@pytest.fixture
def app(campaign: Campaign) -> AutoInitiative:
    return AutoInitiative(campaign)
