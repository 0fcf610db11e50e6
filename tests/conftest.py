# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from nrtrace.config import BridgeSettings
from nrtrace.hooks import Observability
from nrtrace.layer import NewRelicLayer
from tests.helpers.fakes import (
    CapturingHooks,
    FakeClock,
    ManualReporter,
    SequentialIds,
    make_settings,
)

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def bridge_settings() -> BridgeSettings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hooks() -> CapturingHooks:
    return CapturingHooks()


@pytest.fixture
def observability(hooks: CapturingHooks) -> Observability:
    return Observability.with_plugins([hooks])


@pytest.fixture
def layer(
    bridge_settings: BridgeSettings,
    clock: FakeClock,
    observability: Observability,
) -> Iterator[NewRelicLayer]:
    """Layer over a ManualReporter: records stay in the buffer until drained."""
    layer = NewRelicLayer(
        ManualReporter(),
        bridge_settings,
        observability=observability,
        id_generator=SequentialIds(),
        clock=clock,
    )
    yield layer
    layer.shutdown()
