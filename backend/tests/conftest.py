import os
import sys
from pathlib import Path

import pytest
import sentry_sdk

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Disable outbound Sentry calls during tests
sentry_sdk.init = lambda *args, **kwargs: None  # type: ignore[assignment]
os.environ["SENTRY_DSN"] = ""
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("GOOGLE_API_KEY", None)

from backend.tests.fakes import make_services  # noqa: E402
from backend.venue_search.orchestrator import SearchOrchestrator  # noqa: E402


@pytest.fixture
def services():
    return make_services()


@pytest.fixture
def orchestrator(services) -> SearchOrchestrator:
    return SearchOrchestrator(services)
