from __future__ import annotations

from typing import Iterator

import pytest

from climb_planner.telemetry import clear_listeners


@pytest.fixture(autouse=True)
def _reset_telemetry_listeners() -> Iterator[None]:
    clear_listeners()
    yield
    clear_listeners()
