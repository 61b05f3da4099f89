"""
Test Suite Configuration
"""
from datetime import date
from typing import Callable

import pytest

from controlling.config import HierarchySettings, Settings
from controlling.models import AddressDim, BrandDim, ChannelDim, CompanyDim, DimensionSet, FactRow


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def hierarchy_settings() -> HierarchySettings:
    """Hierarchy settings with defaults, independent of the environment"""
    return HierarchySettings(
        group_addresses=True,
        normalize_address_names=True,
        group_brands=True,
        validate_output=True,
        strict_validation=False,
    )


@pytest.fixture
def channels() -> list:
    """Glovo and Uber Eats portals"""
    return [
        ChannelDim(id="E22BC362", name="Glovo"),
        ChannelDim(id="3CCD6861", name="Uber Eats"),
    ]


@pytest.fixture
def single_address_dimensions(channels) -> DimensionSet:
    """Company 1 -> brand 10 -> address 100"""
    return DimensionSet(
        companies=[CompanyDim(id="1", name="Grupo Uno")],
        brands=[BrandDim(id="10", name="Burger Loco", company_id="1")],
        addresses=[AddressDim(id="100", name="Calle Mozart 5", company_id="1", brand_id="10")],
        channels=channels,
    )


@pytest.fixture
def make_fact() -> Callable[..., FactRow]:
    """Factory for fact rows on the company 1 / brand 10 / address 100 path"""
    def factory(**overrides) -> FactRow:
        values = {
            "company_id": "1",
            "brand_id": "10",
            "address_id": "100",
            "channel_id": "E22BC362",
        }
        values.update(overrides)
        return FactRow(**values)

    return factory


@pytest.fixture
def snapshot_months() -> list:
    return [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
