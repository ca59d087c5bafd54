import math

RAPID_ACTING = "rapid-acting"

# Nominal shape of the rapid-acting curve, in minutes for a 3h DIA.
RAPID_PEAK_MINUTES = 75.0
RAPID_END_MINUTES = 180.0
RAPID_REFERENCE_DIA = 3.0


class InterpolatedCurves:
    """
    Data-driven activity tables (% of max glucose infusion rate) for
    Fiasp and NovoRapid. Tables span 300 minutes; a different action
    duration stretches them linearly.
    """

    _DATA = {
        'fiasp': [
            (0, 0), (15, 8), (30, 25), (45, 50), (60, 75),
            (75, 90), (90, 98), (105, 100), (120, 95), (135, 88),
            (150, 78), (165, 65), (180, 50), (195, 38), (210, 28),
            (225, 20), (240, 12), (255, 7), (270, 3), (285, 1), (300, 0)
        ],
        'novorapid': [
            (0, 0), (15, 0), (30, 12), (45, 28), (60, 50),
            (75, 70), (90, 85), (105, 95), (120, 100), (135, 98),
            (150, 90), (165, 80), (180, 65), (195, 50), (210, 38),
            (225, 28), (240, 18), (255, 10), (270, 5), (285, 2), (300, 0)
        ]
    }

    # key -> (total_area, cumulative area at each table point)
    _AREAS: dict[str, tuple[float, list[float]]] = {}

    @classmethod
    def _areas(cls, key: str) -> tuple[float, list[float]]:
        cached = cls._AREAS.get(key)
        if cached is not None:
            return cached
        points = cls._DATA[key]
        cumulative = [0.0]
        for (t0, y0), (t1, y1) in zip(points, points[1:]):
            cumulative.append(cumulative[-1] + (t1 - t0) * (y0 + y1) / 2.0)
        cls._AREAS[key] = (cumulative[-1], cumulative)
        return cls._AREAS[key]

    @classmethod
    def _stretch(cls, key: str, t_min: float, duration_min: float | None) -> tuple[float, float]:
        """Maps real minutes onto table minutes; returns (table_t, scale)."""
        table_end = cls._DATA[key][-1][0]
        if not duration_min or duration_min <= 0:
            return t_min, 1.0
        scale = table_end / duration_min
        return t_min * scale, scale

    @classmethod
    def _segment(cls, key: str, t: float) -> int:
        points = cls._DATA[key]
        for i in range(1, len(points)):
            if t <= points[i][0]:
                return i
        return len(points) - 1

    @classmethod
    def get_activity(cls, key: str, t_min: float, duration_min: float | None = None) -> float:
        """Fraction of the dose acting per minute."""
        if key not in cls._DATA:
            return 0.0
        t, scale = cls._stretch(key, t_min, duration_min)
        points = cls._DATA[key]
        if t <= 0 or t >= points[-1][0]:
            return 0.0
        i = cls._segment(key, t)
        (t0, y0), (t1, y1) = points[i - 1], points[i]
        y = y0 + (t - t0) / (t1 - t0) * (y1 - y0)
        total_area, _ = cls._areas(key)
        if total_area <= 0:
            return 0.0
        return y / total_area * scale

    @classmethod
    def get_iob(cls, key: str, t_min: float, duration_min: float | None = None) -> float:
        """Fraction of the dose still on board."""
        if key not in cls._DATA:
            return 0.0
        t, _ = cls._stretch(key, t_min, duration_min)
        points = cls._DATA[key]
        if t <= 0:
            return 1.0
        if t >= points[-1][0]:
            return 0.0
        total_area, cumulative = cls._areas(key)
        i = cls._segment(key, t)
        (t0, y0), (t1, y1) = points[i - 1], points[i]
        y = y0 + (t - t0) / (t1 - t0) * (y1 - y0)
        consumed = cumulative[i - 1] + (t - t0) * (y0 + y) / 2.0
        return max(0.0, 1.0 - consumed / total_area)


class InsulinCurves:
    """
    Insulin action models. Every curve returns the fraction of a dose on
    board (get_iob) and the fraction absorbed per minute (get_activity)
    for t_min minutes after delivery.
    """

    @staticmethod
    def _rapid_nominal_minutes(t_min: float, dia_hours: float, peak_min: float) -> float:
        # scale to the 3h reference, then move the peak without moving the end
        scaled = t_min * RAPID_REFERENCE_DIA / dia_hours
        if peak_min <= 0 or peak_min >= RAPID_END_MINUTES or peak_min == RAPID_PEAK_MINUTES:
            return scaled
        if scaled < peak_min:
            return scaled * RAPID_PEAK_MINUTES / peak_min
        return RAPID_PEAK_MINUTES + (scaled - peak_min) * (
            (RAPID_END_MINUTES - RAPID_PEAK_MINUTES) / (RAPID_END_MINUTES - peak_min)
        )

    @staticmethod
    def rapid_acting_iob(t_min: float, dia_hours: float, peak_min: float = RAPID_PEAK_MINUTES) -> float:
        if dia_hours <= 0:
            return 0.0
        if t_min <= 0:
            return 1.0
        minutes = InsulinCurves._rapid_nominal_minutes(t_min, dia_hours, peak_min)
        if minutes < RAPID_PEAK_MINUTES:
            x1 = minutes / 5.0 + 1.0
            return 1.0 - 0.001852 * x1 * x1 + 0.001852 * x1
        if minutes < RAPID_END_MINUTES:
            x2 = (minutes - RAPID_PEAK_MINUTES) / 5.0
            return max(0.0, 0.001323 * x2 * x2 - 0.054233 * x2 + 0.55556)
        return 0.0

    @staticmethod
    def rapid_acting_activity(t_min: float, dia_hours: float, peak_min: float = RAPID_PEAK_MINUTES) -> float:
        if dia_hours <= 0 or t_min <= 0 or peak_min <= 0 or peak_min >= RAPID_END_MINUTES:
            return 0.0
        minutes = t_min * RAPID_REFERENCE_DIA / dia_hours
        height = 2.0 / dia_hours / 60.0
        if minutes < peak_min:
            return height / peak_min * minutes
        if minutes < RAPID_END_MINUTES:
            return height - (minutes - peak_min) * height / (RAPID_END_MINUTES - peak_min)
        return 0.0

    @staticmethod
    def _walsh_tau(peak_min, duration_min):
        if duration_min <= 0:
            return 0
        denom = 1 - 2 * peak_min / duration_min
        if denom == 0:
            return 0
        return peak_min * (1 - peak_min / duration_min) / denom

    @staticmethod
    def _walsh_F(t, duration, tau):
        # antiderivative of (1 - t/duration) * exp(-t/tau)
        return tau * math.exp(-t / tau) * ((tau / duration) - 1 + (t / duration))

    @staticmethod
    def exponential_activity(t_min: float, peak_min: float, duration_min: float) -> float:
        if t_min <= 0 or t_min >= duration_min:
            return 0.0
        tau = InsulinCurves._walsh_tau(peak_min, duration_min)
        if tau <= 0:
            return InsulinCurves.bilinear_activity(t_min, peak_min, duration_min)
        area = InsulinCurves._walsh_F(duration_min, duration_min, tau) - InsulinCurves._walsh_F(0, duration_min, tau)
        if area == 0:
            return 0.0
        return (1 - t_min / duration_min) * math.exp(-t_min / tau) / area

    @staticmethod
    def exponential_iob(t_min: float, peak_min: float, duration_min: float) -> float:
        if t_min <= 0:
            return 1.0
        if t_min >= duration_min:
            return 0.0
        tau = InsulinCurves._walsh_tau(peak_min, duration_min)
        if tau <= 0:
            return InsulinCurves.bilinear_iob(t_min, peak_min, duration_min)
        f_end = InsulinCurves._walsh_F(duration_min, duration_min, tau)
        f_start = InsulinCurves._walsh_F(0, duration_min, tau)
        if f_end == f_start:
            return 0.0
        return (f_end - InsulinCurves._walsh_F(t_min, duration_min, tau)) / (f_end - f_start)

    @staticmethod
    def bilinear_activity(t_min: float, peak_min: float, duration_min: float) -> float:
        if t_min <= 0 or t_min >= duration_min:
            return 0.0
        h = 2.0 / duration_min
        if t_min < peak_min:
            return h * (t_min / peak_min)
        return h * ((duration_min - t_min) / (duration_min - peak_min))

    @staticmethod
    def bilinear_iob(t_min: float, peak_min: float, duration_min: float) -> float:
        if t_min <= 0:
            return 1.0
        if t_min >= duration_min:
            return 0.0
        h = 2.0 / duration_min
        if t_min < peak_min:
            return max(0.0, 1.0 - 0.5 * t_min * h * (t_min / peak_min))
        remaining = duration_min - t_min
        return max(0.0, 0.5 * remaining * h * (remaining / (duration_min - peak_min)))

    @staticmethod
    def linear_iob(t_min: float, duration_min: float) -> float:
        if t_min <= 0:
            return 1.0
        return max(0.0, 1.0 - t_min / duration_min)

    @staticmethod
    def linear_activity(t_min: float, duration_min: float) -> float:
        if t_min <= 0 or t_min >= duration_min:
            return 0.0
        return 1.0 / duration_min

    @staticmethod
    def get_iob(t_min: float, dia_hours: float, peak_min: float, model_type: str) -> float:
        m = model_type.lower()
        duration_min = dia_hours * 60.0
        if duration_min <= 0:
            return 0.0
        if m == RAPID_ACTING:
            return InsulinCurves.rapid_acting_iob(t_min, dia_hours, peak_min)
        if m in ('fiasp', 'novorapid'):
            return InterpolatedCurves.get_iob(m, t_min, duration_min)
        if m in ('bilinear', 'triangle'):
            return InsulinCurves.bilinear_iob(t_min, peak_min, duration_min)
        if m in ('exponential', 'walsh'):
            return InsulinCurves.exponential_iob(t_min, peak_min, duration_min)
        return InsulinCurves.linear_iob(t_min, duration_min)

    @staticmethod
    def get_activity(t_min: float, dia_hours: float, peak_min: float, model_type: str) -> float:
        m = model_type.lower()
        duration_min = dia_hours * 60.0
        if duration_min <= 0:
            return 0.0
        if m == RAPID_ACTING:
            return InsulinCurves.rapid_acting_activity(t_min, dia_hours, peak_min)
        if m in ('fiasp', 'novorapid'):
            return InterpolatedCurves.get_activity(m, t_min, duration_min)
        if m in ('bilinear', 'triangle'):
            return InsulinCurves.bilinear_activity(t_min, peak_min, duration_min)
        if m in ('exponential', 'walsh'):
            return InsulinCurves.exponential_activity(t_min, peak_min, duration_min)
        return InsulinCurves.linear_activity(t_min, duration_min)


class CarbCurves:
    @staticmethod
    def linear_remaining(carbs: float, minutes_until_decayed: float, carbs_hr: float) -> float:
        """Carbs left when absorption runs at carbs_hr until the decay end."""
        if carbs <= 0 or minutes_until_decayed <= 0 or carbs_hr <= 0:
            return 0.0
        return min(carbs, minutes_until_decayed / 60.0 * carbs_hr)

    @staticmethod
    def impact_rate(sens: float, carb_ratio: float, carbs_hr: float) -> float:
        """BG rise while decaying, mg/dL per minute."""
        if carb_ratio <= 0:
            return 0.0
        return sens / carb_ratio * carbs_hr / 60.0
