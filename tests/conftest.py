import sys
import pytest

from packstate.app.context import PROCESS_REGISTRY
from packstate.core.tracing import getTraceHub, getTracer



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")



@pytest.fixture(autouse=True)
def _isolateProcessState():
    PROCESS_REGISTRY.clear()
    getTraceHub().clear()
    getTracer().enabled = True
    yield
    PROCESS_REGISTRY.clear()
    getTraceHub().clear()
    getTracer().enabled = True
