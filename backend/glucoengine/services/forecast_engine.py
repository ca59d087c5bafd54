import math
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Union

from glucoengine.core.settings import EngineSettings, get_settings
from glucoengine.models.forecast import ForecastPoint, ForecastResult, ForecastSettings
from glucoengine.models.glucose import BgNow, Delta, GlucoseReading
from glucoengine.services.glucose_stats import normalize_readings, summarize

logger = logging.getLogger(__name__)

BG_REF = 140.0
LOSS_REF = 120.0
AR = (-0.723, 1.716)
STEP_MS = 5 * 60 * 1000
FORECAST_POINTS = 6
WARN_THRESHOLD = 0.05
URGENT_THRESHOLD = 0.10
CONE_COLOR = "cyan"

# cone half-width in log space, one entry per 5-minute step (65 minutes)
CONE_STEPS = [0.020, 0.041, 0.061, 0.081, 0.099, 0.116, 0.132, 0.146, 0.159, 0.171, 0.182, 0.192, 0.201]


@dataclass(frozen=True)
class Ar2State:
    mills: int
    prev: float
    curr: float

    def step(self) -> "Ar2State":
        return Ar2State(
            mills=self.mills + STEP_MS,
            prev=self.curr,
            curr=AR[0] * self.prev + AR[1] * self.curr,
        )

    def mgdl(self, offset: float, bg_min: float, bg_max: float) -> int:
        value = round(BG_REF * math.exp(self.curr + offset))
        return int(min(max(value, bg_min), bg_max))


SettingsInput = Union[ForecastSettings, Mapping[str, Any], None]


class ForecastEngine:
    """
    AR(2) short-horizon glucose prediction in log space around 140 mg/dL,
    seeded by the current and 5-minutes-ago bucket means.
    """

    @staticmethod
    def _bounds(engine_settings: Optional[EngineSettings]) -> tuple[float, float]:
        cfg = (engine_settings or get_settings()).forecast
        return cfg.bg_min, cfg.bg_max

    @staticmethod
    def _inputs(
        history: Iterable[GlucoseReading], bg_now: Optional[BgNow], delta: Optional[Delta]
    ) -> tuple[list[GlucoseReading], Optional[BgNow], Optional[Delta]]:
        readings = normalize_readings(history or ())
        if bg_now is None or delta is None:
            derived_now, derived_delta = summarize(readings)
            bg_now = bg_now or derived_now
            delta = delta or derived_delta
        return readings, bg_now, delta

    @staticmethod
    def can_forecast(
        bg_now: Optional[BgNow], delta: Optional[Delta], engine_settings: Optional[EngineSettings] = None
    ) -> bool:
        bg_min, _ = ForecastEngine._bounds(engine_settings)
        if bg_now is None or bg_now.mean is None or bg_now.mean < bg_min:
            return False
        if delta is None or delta.mean5_mins_ago is None:
            return False
        return math.isfinite(delta.mean5_mins_ago) and delta.mean5_mins_ago > 0

    @staticmethod
    def _initial_state(bg_now: BgNow, delta: Delta) -> Ar2State:
        return Ar2State(
            mills=bg_now.mills or 0,
            prev=math.log(delta.mean5_mins_ago / BG_REF),
            curr=math.log(bg_now.mean / BG_REF),
        )

    @staticmethod
    def calculate_forecast(
        history: Iterable[GlucoseReading],
        bg_now: Optional[BgNow] = None,
        delta: Optional[Delta] = None,
        settings: SettingsInput = None,
        engine_settings: Optional[EngineSettings] = None,
    ) -> ForecastResult:
        alarm = settings if isinstance(settings, ForecastSettings) else ForecastSettings.model_validate(settings or {})
        readings, bg_now, delta = ForecastEngine._inputs(history, bg_now, delta)

        if len(readings) < 2 or not ForecastEngine.can_forecast(bg_now, delta, engine_settings):
            logger.debug("Not enough data to forecast (%d readings)", len(readings))
            return ForecastResult()

        bg_min, bg_max = ForecastEngine._bounds(engine_settings)
        state = ForecastEngine._initial_state(bg_now, delta)
        predicted: List[ForecastPoint] = []
        for _ in range(FORECAST_POINTS):
            state = state.step()
            predicted.append(ForecastPoint(timestamp_ms=state.mills, value_mgdl=state.mgdl(0.0, bg_min, bg_max)))

        size = min(len(predicted) - 1, FORECAST_POINTS)
        avg_loss = sum(
            (1.0 / size) * math.log10(point.value_mgdl / LOSS_REF) ** 2 for point in predicted[: size + 1]
        )

        level = None
        if avg_loss > URGENT_THRESHOLD:
            level = "urgent"
        elif avg_loss > WARN_THRESHOLD:
            level = "warn"

        event_name = None
        if level:
            in20 = predicted[3].value_mgdl
            if alarm.alarm_high and in20 > alarm.bg_target_top:
                event_name = "high"
            elif alarm.alarm_low and in20 < alarm.bg_target_bottom:
                event_name = "low"

        return ForecastResult(
            predicted=predicted,
            avg_loss=avg_loss,
            display_line=f"BG 15m: {predicted[2].value_mgdl} mg/dl",
            event_name=event_name,
            level=level,
        )

    @staticmethod
    def generate_forecast_cone(
        history: Iterable[GlucoseReading],
        bg_now: Optional[BgNow] = None,
        delta: Optional[Delta] = None,
        cone_factor: Optional[float] = None,
        engine_settings: Optional[EngineSettings] = None,
    ) -> List[ForecastPoint]:
        """
        Lower and upper bound per step when cone_factor > 0 (26 points),
        otherwise the 13 centre-line points.
        """
        cfg = engine_settings or get_settings()
        if cone_factor is None:
            cone_factor = cfg.forecast.cone_factor
        readings, bg_now, delta = ForecastEngine._inputs(history, bg_now, delta)
        if len(readings) < 2 or not ForecastEngine.can_forecast(bg_now, delta, cfg):
            return []

        bg_min, bg_max = cfg.forecast.bg_min, cfg.forecast.bg_max
        state = ForecastEngine._initial_state(bg_now, delta)
        points: List[ForecastPoint] = []
        for width in CONE_STEPS:
            state = state.step()
            if cone_factor > 0:
                offset = width * cone_factor
                offsets = (-offset, offset)
            else:
                offsets = (0.0,)
            for value_offset in offsets:
                points.append(
                    ForecastPoint(
                        timestamp_ms=state.mills,
                        value_mgdl=state.mgdl(value_offset, bg_min, bg_max),
                        color=CONE_COLOR,
                    )
                )
        return points


__all__ = ["CONE_STEPS", "ForecastEngine"]
