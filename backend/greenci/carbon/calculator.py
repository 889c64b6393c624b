"""
Carbon Calculator

Converts pipeline execution facts into an energy / CO2 estimate and a 0-100
sustainability ("eco") score with a letter grade.

Energy model:
  kWh = (watts_per_runner / 1000) × (duration_seconds / 3600)
  every job adds a fixed 30 s of runner time through the same formula
  CO2 = (base kWh + overhead kWh) × co2_per_kwh × efficiency_factor

The efficiency factor is a concurrency discount (≤2 running jobs → 1.0,
≤5 → 0.95, more → 0.9). None of these numbers are measured; the confidence
value tells consumers how complete the input data was, nothing more.
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from numbers import Real

from greenci.carbon import coefficients as coef
from greenci.errors import ComputationError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class EnergyEstimate:
    energy_kwh: float
    co2_kg: float

    def to_dict(self) -> dict:
        return {"energy_kwh": self.energy_kwh, "co2_kg": self.co2_kg}


@dataclass
class CarbonFootprint:
    energy_kwh: float
    co2_kg: float
    base: EnergyEstimate
    job_overhead: EnergyEstimate
    efficiency_factor: float
    confidence: float
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "energy_kwh": self.energy_kwh,
            "co2_kg": self.co2_kg,
            "breakdown": {
                "base": self.base.to_dict(),
                "job_overhead": self.job_overhead.to_dict(),
                "efficiency_factor": self.efficiency_factor,
            },
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }


@dataclass
class Deduction:
    factor: str
    penalty: int
    reason: str

    def to_dict(self) -> dict:
        return {"factor": self.factor, "penalty": self.penalty, "reason": self.reason}


@dataclass
class EcoScore:
    score: int
    grade: str
    deductions: list[Deduction] = field(default_factory=list)
    details: dict = field(default_factory=dict)
    recommendations: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "grade": self.grade,
            "deductions": [d.to_dict() for d in self.deductions],
            "details": self.details,
            "recommendations": self.recommendations,
        }


def grade_for_score(score: float) -> str:
    """Map a 0-100 score onto the A-F ladder (≥90 A, ≥75 B, ≥60 C, ≥40 D)."""
    for minimum, grade in coef.GRADE_THRESHOLDS:
        if score >= minimum:
            return grade
    return coef.LOWEST_GRADE


def _is_number(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


# Recommendation emitted for each deduction factor
_RECOMMENDATIONS: dict[str, dict] = {
    "duration": {
        "type": "caching",
        "priority": "high",
        "description": "Enable dependency caching to reduce pipeline duration",
        "impact": "Can reduce duration by 30-50%",
    },
    "job_count": {
        "type": "consolidation",
        "priority": "medium",
        "description": "Consolidate small jobs to reduce overhead",
        "impact": "Reduce job overhead by 20-40%",
    },
    "cache_efficiency": {
        "type": "cache_optimization",
        "priority": "high",
        "description": "Optimize cache keys and cache policies",
        "impact": "Improve cache hit rate by 20-60%",
    },
}


class CarbonCalculator:
    """Energy, CO2 and eco-score estimation for CI pipeline runs."""

    def __init__(
        self,
        watts_per_runner: float | None = None,
        co2_per_kwh: float | None = None,
        grid_intensity: str | None = None,
    ):
        self.grid_intensity = grid_intensity or coef.DEFAULT_GRID_INTENSITY
        self.watts_per_runner = (
            watts_per_runner if watts_per_runner is not None else coef.DEFAULT_WATTS_PER_RUNNER
        )
        if co2_per_kwh is None:
            co2_per_kwh = coef.GRID_INTENSITY_KG_PER_KWH.get(
                self.grid_intensity,
                coef.GRID_INTENSITY_KG_PER_KWH[coef.DEFAULT_GRID_INTENSITY],
            )
        self.co2_per_kwh = co2_per_kwh

    @classmethod
    def from_settings(cls, settings) -> "CarbonCalculator":
        return cls(
            watts_per_runner=settings.watts_per_runner,
            co2_per_kwh=settings.co2_per_kwh,
            grid_intensity=settings.grid_intensity,
        )

    # ------------------------------------------------------------------
    # Footprint
    # ------------------------------------------------------------------

    def calculate_pipeline_footprint(self, pipeline: Mapping, jobs: list) -> CarbonFootprint:
        """Estimate energy and CO2 for one pipeline run."""
        self._validate_input(pipeline, jobs)

        duration = pipeline.get("duration") or 0

        base = self.estimate_carbon(duration)
        overhead = self._calculate_job_overhead(jobs)
        efficiency_factor = self._get_efficiency_factor(jobs)

        total_energy = base.energy_kwh + overhead.energy_kwh
        total_co2 = total_energy * self.co2_per_kwh * efficiency_factor
        if not (math.isfinite(total_energy) and math.isfinite(total_co2)):
            raise ComputationError(
                "Carbon estimate produced a non-finite value",
                energy_kwh=total_energy,
                co2_kg=total_co2,
            )

        footprint = CarbonFootprint(
            energy_kwh=round(total_energy, 6),
            co2_kg=round(total_co2, 6),
            base=base,
            job_overhead=overhead,
            efficiency_factor=efficiency_factor,
            confidence=self._calculate_confidence(pipeline, jobs),
        )
        logger.debug(
            "Carbon calculation complete: %.6f kWh, %.6f kg CO2",
            footprint.energy_kwh, footprint.co2_kg,
        )
        return footprint

    # ------------------------------------------------------------------
    # Eco score
    # ------------------------------------------------------------------

    def calculate_eco_score(
        self,
        pipeline: Mapping,
        jobs: list,
        historical_data: Mapping | None = None,
    ) -> EcoScore:
        """
        Score a pipeline 0-100 by applying deductions in a fixed order:
        duration, job count, cache efficiency, parallel efficiency and,
        when a historical average is supplied, a negative trend.
        """
        self._validate_input(pipeline, jobs)

        duration = pipeline.get("duration") or 0
        job_count = len(jobs)

        score = 100
        deductions: list[Deduction] = []

        def deduct(factor: str, penalty: int, reason: str) -> None:
            nonlocal score
            penalty = min(penalty, score)
            score -= penalty
            deductions.append(Deduction(factor=factor, penalty=penalty, reason=reason))

        if duration > coef.OPTIMAL_DURATION_SECONDS:
            over_minutes = math.floor((duration - coef.OPTIMAL_DURATION_SECONDS) / 60)
            # Any overrun costs at least one point
            penalty = min(coef.MAX_DURATION_PENALTY, max(1, over_minutes))
            overrun = f"{over_minutes} minutes" if over_minutes else "less than a minute"
            deduct("duration", penalty, f"Pipeline exceeds optimal duration by {overrun}")

        if job_count > coef.OPTIMAL_JOB_COUNT:
            penalty = min(
                coef.MAX_JOB_COUNT_PENALTY,
                (job_count - coef.OPTIMAL_JOB_COUNT) * coef.PENALTY_PER_EXTRA_JOB,
            )
            deduct("job_count", penalty, f"High job count ({job_count}) increases overhead")

        cache_efficiency = self._calculate_cache_efficiency(jobs)
        if cache_efficiency < coef.CACHE_EFFICIENCY_THRESHOLD:
            deduct(
                "cache_efficiency",
                coef.CACHE_EFFICIENCY_PENALTY,
                f"Low cache hit rate ({round(cache_efficiency * 100)}%)",
            )

        parallel_efficiency = self._calculate_parallel_efficiency(jobs)
        if parallel_efficiency < coef.PARALLEL_EFFICIENCY_THRESHOLD:
            deduct(
                "parallel_efficiency",
                coef.PARALLEL_EFFICIENCY_PENALTY,
                "Inefficient parallelization detected",
            )

        average_score = (historical_data or {}).get("average_score")
        if _is_number(average_score) and average_score:
            trend = score - average_score
            if trend < -coef.NEGATIVE_TREND_THRESHOLD:
                deduct(
                    "negative_trend",
                    coef.NEGATIVE_TREND_PENALTY,
                    f"Score dropped {abs(trend):g} points from historical average",
                )

        score = max(0, min(100, int(round(score))))

        return EcoScore(
            score=score,
            grade=grade_for_score(score),
            deductions=deductions,
            details={
                "duration": duration,
                "job_count": job_count,
                "cache_efficiency": round(cache_efficiency * 100),
                "parallel_efficiency": round(parallel_efficiency * 100),
            },
            recommendations=self._generate_recommendations(deductions),
        )

    # ------------------------------------------------------------------
    # Impact prediction
    # ------------------------------------------------------------------

    def predict_impact(self, current_metrics: Mapping, changes: Mapping) -> dict:
        """
        Simulate a pipeline after the proposed changes and report savings.

        current_metrics: {duration, job_count, co2_kg, energy_kwh}
        changes: {duration_delta (minutes), job_delta, cache_improvement, pipeline_frequency}

        Coarse by construction: confidence is fixed at 0.85.
        """
        current_duration = current_metrics.get("duration") or 0
        current_jobs = current_metrics.get("job_count") or 0
        current_co2 = current_metrics.get("co2_kg") or 0.0
        current_energy = current_metrics.get("energy_kwh") or 0.0
        for name, value in (
            ("duration", current_duration),
            ("job_count", current_jobs),
            ("co2_kg", current_co2),
            ("energy_kwh", current_energy),
        ):
            if not _is_number(value):
                raise ValidationError(f"current_metrics.{name} must be a number")

        duration_delta = changes.get("duration_delta") or 0
        job_delta = changes.get("job_delta") or 0
        if not _is_number(duration_delta) or not _is_number(job_delta):
            raise ValidationError("duration_delta and job_delta must be numbers")

        new_duration = max(0, current_duration + duration_delta * 60)
        new_job_count = max(1, int(current_jobs + job_delta))

        simulated_pipeline = {"duration": new_duration}
        simulated_jobs = [{} for _ in range(new_job_count)]
        new_footprint = self.calculate_pipeline_footprint(simulated_pipeline, simulated_jobs)

        co2_saved = current_co2 - new_footprint.co2_kg
        energy_saved = current_energy - new_footprint.energy_kwh
        percentage = (co2_saved / current_co2 * 100) if current_co2 else 0.0

        annual_co2 = co2_saved * coef.DAYS_PER_YEAR
        return {
            "new_metrics": new_footprint.to_dict(),
            "savings": {
                "co2_kg": round(co2_saved, 6),
                "energy_kwh": round(energy_saved, 6),
                "percentage": round(percentage, 2),
            },
            "annual_projection": {
                "co2_kg": round(annual_co2, 6),
                "energy_kwh": round(energy_saved * coef.DAYS_PER_YEAR, 6),
                "trees_equivalent": round(annual_co2 / coef.CO2_KG_PER_TREE_YEAR),
                "cars_off_road": round(annual_co2 / coef.CO2_KG_PER_CAR_YEAR),
            },
            "payback_period_days": self._calculate_payback_period(changes, co2_saved),
            "confidence": coef.PREDICTION_CONFIDENCE,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def estimate_carbon(self, duration_seconds: float) -> EnergyEstimate:
        """Energy and CO2 of one runner busy for `duration_seconds` (no efficiency discount)."""
        kwh = (self.watts_per_runner / 1000) * (duration_seconds / 3600)
        return EnergyEstimate(
            energy_kwh=round(kwh, 6),
            co2_kg=round(kwh * self.co2_per_kwh, 6),
        )

    def _calculate_job_overhead(self, jobs: list) -> EnergyEstimate:
        return self.estimate_carbon(len(jobs) * coef.JOB_OVERHEAD_SECONDS)

    @staticmethod
    def _get_efficiency_factor(jobs: list) -> float:
        concurrent = sum(1 for j in jobs if j.get("status") == "running")
        for max_running, factor in coef.EFFICIENCY_FACTORS:
            if concurrent <= max_running:
                return factor
        return coef.EFFICIENCY_FACTOR_FLOOR

    @staticmethod
    def _calculate_confidence(pipeline: Mapping, jobs: list) -> float:
        confidence = 1.0
        if not pipeline.get("duration"):
            confidence *= coef.CONFIDENCE_MISSING_DURATION
        if not jobs:
            confidence *= coef.CONFIDENCE_NO_JOBS
        if len(jobs) > coef.CONFIDENCE_MANY_JOBS_THRESHOLD:
            confidence *= coef.CONFIDENCE_MANY_JOBS
        return min(1.0, round(confidence, 6))

    @staticmethod
    def _calculate_cache_efficiency(jobs: list) -> float:
        cache_jobs = [j for j in jobs if "cache" in (j.get("name") or "")]
        if not cache_jobs:
            return coef.DEFAULT_CACHE_EFFICIENCY
        hits = sum(
            1 for j in cache_jobs
            if j.get("status") == "success"
            and _is_number(j.get("duration"))
            and j["duration"] < coef.CACHE_HIT_MAX_SECONDS
        )
        return hits / len(cache_jobs)

    @staticmethod
    def _calculate_parallel_efficiency(jobs: list) -> float:
        if not jobs:
            return coef.DEFAULT_PARALLEL_EFFICIENCY
        durations = [j.get("duration") or 0 for j in jobs]
        longest = max(durations)
        if longest == 0:
            return coef.DEFAULT_PARALLEL_EFFICIENCY
        return sum(durations) / (longest * len(jobs))

    @staticmethod
    def _generate_recommendations(deductions: list[Deduction]) -> list[dict]:
        return [
            dict(_RECOMMENDATIONS[d.factor])
            for d in deductions
            if d.factor in _RECOMMENDATIONS
        ]

    @staticmethod
    def _calculate_payback_period(changes: Mapping, co2_saved: float) -> int | None:
        """Days until the implementation effort is repaid in saved CO2, None if nothing is saved."""
        effort = sum(
            1 for key in ("duration_delta", "job_delta", "cache_improvement")
            if changes.get(key)
        )
        per_day = co2_saved * (changes.get("pipeline_frequency") or coef.DEFAULT_PIPELINES_PER_DAY)
        if per_day <= 0:
            return None
        return math.ceil(effort / per_day)

    @staticmethod
    def _validate_input(pipeline, jobs) -> None:
        if not isinstance(pipeline, Mapping):
            raise ValidationError("Invalid pipeline data")
        if not isinstance(jobs, list):
            raise ValidationError("Jobs must be an array")

        duration = pipeline.get("duration")
        if duration is not None:
            if not _is_number(duration) or not math.isfinite(duration):
                raise ValidationError("Pipeline duration must be a number", duration=duration)
            if duration < 0 or duration > coef.MAX_PIPELINE_DURATION_SECONDS:
                raise ValidationError("Invalid pipeline duration", duration=duration)

        for index, job in enumerate(jobs):
            if not isinstance(job, Mapping):
                raise ValidationError(f"Job {index} must be an object")
            job_duration = job.get("duration")
            if job_duration is not None and (not _is_number(job_duration) or job_duration < 0):
                raise ValidationError(f"Job {index} has an invalid duration", duration=job_duration)
