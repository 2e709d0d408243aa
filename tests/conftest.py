"""
Root pytest configuration for Narrative tests

Adds the backend package and the shared fixtures to the Python path
"""
import os
import sys

import pytest

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(project_root, "backend"))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from narrative.ai_pipeline.key_rotation import KeyRotationController  # noqa: E402
from narrative.config import GATEKEEPER_PROVIDER, GEMINI_PROVIDER  # noqa: E402


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay"""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def controller(recording_sleep):
    """Key controller with two keys per provider and instant backoff"""
    return KeyRotationController(
        {
            GEMINI_PROVIDER: ["gemini-key-0001", "gemini-key-0002"],
            GATEKEEPER_PROVIDER: ["gate-key-0001"],
        },
        max_attempts=3,
        sleep=recording_sleep,
        jitter=lambda: 0.0,
    )
