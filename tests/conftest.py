from __future__ import annotations

import pytest

from mitm_dind.config.settings import DindSettings
from fixtures.settings import make_settings


@pytest.fixture
def anyio_backend() -> str:
    # Force AnyIO-managed tests to use asyncio only
    return "asyncio"


@pytest.fixture
def settings() -> DindSettings:
    return make_settings()
