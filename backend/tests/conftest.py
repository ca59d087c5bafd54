import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
str_root = str(ROOT)
if str_root not in sys.path:
    sys.path.insert(0, str_root)

from glucoengine.core.settings import EngineSettings, get_settings  # noqa: E402
from glucoengine.models.profile import ProfileSchedule, TimeValue  # noqa: E402
from glucoengine.services.profile_resolver import ProfileResolver  # noqa: E402

MINUTE_MS = 60_000


def mills(iso: str) -> int:
    dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("GLUCOENGINE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GLUCOENGINE_CONFIG_PATH", str(tmp_path / "missing.json"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def cob_profile(settings) -> ProfileResolver:
    """carbs_hr 30, sens 95, carb ratio 18, carb delay 20 minutes."""
    resolver = ProfileResolver(settings=settings)
    resolver.load_schedules(
        [
            ProfileSchedule(
                name="Default",
                dia=3,
                carbs_hr=30,
                delay=20,
                sens=[TimeValue(time="00:00", value=95)],
                carbratio=[TimeValue(time="00:00", value=18)],
                basal=[TimeValue(time="00:00", value=1.0)],
                target_low=[TimeValue(time="00:00", value=80)],
                target_high=[TimeValue(time="00:00", value=180)],
            )
        ]
    )
    return resolver


@pytest.fixture
def day_profile(settings) -> ProfileResolver:
    resolver = ProfileResolver(settings=settings)
    resolver.load_schedules(
        [
            {
                "name": "Default",
                "dia": 4,
                "carbs_hr": 20,
                "units": "mg/dl",
                "sens": [
                    {"time": "00:00", "value": 50.0},
                    {"time": "08:00", "value": 45.0},
                    {"time": "18:00", "value": 40.0},
                ],
                "carbratio": [
                    {"time": "00:00", "value": 18.0},
                    {"time": "08:00", "value": 15.0},
                    {"time": "18:00", "value": 20.0},
                ],
                "basal": [
                    {"time": "00:00", "value": 0.8},
                    {"time": "06:00", "value": 1.2},
                    {"time": "22:00", "value": 0.9},
                ],
                "target_low": [{"time": "00:00", "value": 70.0}],
                "target_high": [{"time": "00:00", "value": 180.0}],
            },
            {
                "name": "Weekend",
                "dia": 4,
                "basal": [
                    {"time": "00:00", "value": 0.7},
                    {"time": "08:00", "value": 1.0},
                ],
            },
        ]
    )
    return resolver
