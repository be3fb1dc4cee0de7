from __future__ import annotations

from typing import Iterator

import pytest

import sampler


@pytest.fixture(autouse=True)
def free_microphone() -> Iterator[None]:
    yield
    if sampler._device_guard.locked():
        sampler._device_guard.release()
