"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - component/  : Component tests (mocked dependencies)
    - unit/       : Unit tests (pure functions, no I/O)
    - contracts/  : Test data factories shared by every layer
"""
import os
import sys
from typing import Any, Dict

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")

from tests.contracts.postcard.data_contract import PostcardTestDataFactory


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICE_NAME = "postcard_service"
    SERVICE_PORT = 8290
    LOB_BASE_URL = "https://api.lob.test/v1"

    # Headers the gateway forwards after authentication
    @staticmethod
    def auth_headers(organization_id: str, user_id: str = "usr_test") -> Dict[str, Any]:
        return {
            "X-Organization-ID": organization_id,
            "X-User-ID": user_id,
            "X-User-Role": "admin",
        }


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration"""
    return TestConfig()


@pytest.fixture
def factory() -> PostcardTestDataFactory:
    """Postcard test data factory"""
    return PostcardTestDataFactory()


@pytest.fixture
def org_id(factory: PostcardTestDataFactory) -> str:
    return factory.make_organization_id()
