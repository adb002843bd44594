"""
Reading Aggregator.

Reduces the spot samples of one reading session (target: 10 probe
insertions) into a single averaged SoilReading. Invalid field values are
dropped per field; a session with no usable N, P or K value is invalid.

SpotSampler is the pacing helper used by the sensor transport: it retries a
spot read once and pads every spot to a minimum duration.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import asyncio
import math
import time
import logging

from fertisense.services.recommendation_errors import SessionInvalidError
from fertisense.services.recommendation_rules import (
    MIN_SPOT_DURATION_SECONDS,
    PH_ACIDIC_BELOW,
    PH_ALKALINE_ABOVE,
    READING_DECIMALS,
    SPOT_READ_ATTEMPTS,
    SPOT_RETRY_PAUSE_SECONDS,
    TARGET_SAMPLE_COUNT,
    round_half_up,
)

logger = logging.getLogger(__name__)


@dataclass
class SpotSample:
    """Raw reading from one probe insertion."""
    n: Any = None
    p: Any = None
    k: Any = None
    ph: Any = None
    ok: Optional[bool] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpotSample":
        return cls(
            n=data.get("n"),
            p=data.get("p"),
            k=data.get("k"),
            ph=data.get("ph", data.get("pH")),
            ok=data.get("ok"),
            error=data.get("error"),
        )

    @property
    def rejected(self) -> bool:
        return self.ok is False

    @property
    def has_complete_npk(self) -> bool:
        return all(valid_value(v) is not None for v in (self.n, self.p, self.k))


@dataclass
class SoilReading:
    """Averaged reading. A None concentration means no valid sample for it."""
    nitrogen_ppm: Optional[float]
    phosphorus_ppm: Optional[float]
    potassium_ppm: Optional[float]
    ph: Optional[float] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sample_count: int = 0
    valid_sample_count: int = 0
    is_partial: bool = False

    @property
    def ph_status(self) -> Optional[str]:
        return ph_status(self.ph)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nitrogenPpm": self.nitrogen_ppm,
            "phosphorusPpm": self.phosphorus_ppm,
            "potassiumPpm": self.potassium_ppm,
            "pH": self.ph,
            "capturedAt": self.captured_at.isoformat(),
            "sampleCount": self.sample_count,
            "validSampleCount": self.valid_sample_count,
            "isPartial": self.is_partial,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SoilReading":
        captured_at = data.get("capturedAt")
        return cls(
            nitrogen_ppm=data.get("nitrogenPpm"),
            phosphorus_ppm=data.get("phosphorusPpm"),
            potassium_ppm=data.get("potassiumPpm"),
            ph=data.get("pH"),
            captured_at=datetime.fromisoformat(captured_at) if captured_at else datetime.now(timezone.utc),
            sample_count=int(data.get("sampleCount", 0)),
            valid_sample_count=int(data.get("validSampleCount", 0)),
            is_partial=bool(data.get("isPartial", False)),
        )


def ph_status(ph: Optional[float]) -> Optional[str]:
    if ph is None:
        return None
    if ph < PH_ACIDIC_BELOW:
        return "Acidic"
    if ph > PH_ALKALINE_ABOVE:
        return "Alkaline"
    return "Neutral"


def valid_value(value: Any) -> Optional[float]:
    """Return the value as float if it is a finite non-negative number."""
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number < 0:
        return None
    return number


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round_half_up(sum(values) / len(values), READING_DECIMALS)


def aggregate(
    samples: List[SpotSample],
    captured_at: Optional[datetime] = None,
    target_count: int = TARGET_SAMPLE_COUNT,
) -> SoilReading:
    """
    Average a session's spot samples.

    Raises SessionInvalidError when no sample has a usable N, P or K value.
    """
    accepted = [s for s in samples if not s.rejected]
    rejected = len(samples) - len(accepted)
    if rejected:
        logger.warning(f"Ignoring {rejected} spot sample(s) reported not ok by the sensor")

    values = {"n": [], "p": [], "k": [], "ph": []}
    for sample in accepted:
        for name in values:
            number = valid_value(getattr(sample, name))
            if number is not None:
                values[name].append(number)

    if not values["n"] and not values["p"] and not values["k"]:
        raise SessionInvalidError(
            f"No usable N, P or K value in {len(samples)} spot sample(s)"
        )

    complete = sum(1 for s in accepted if s.has_complete_npk)
    reading = SoilReading(
        nitrogen_ppm=_mean(values["n"]),
        phosphorus_ppm=_mean(values["p"]),
        potassium_ppm=_mean(values["k"]),
        ph=_mean(values["ph"]),
        captured_at=captured_at or datetime.now(timezone.utc),
        sample_count=len(samples),
        valid_sample_count=complete,
        is_partial=complete < target_count,
    )
    if reading.is_partial:
        logger.info(f"Reading averaged from {complete}/{target_count} complete samples")
    return reading


class SpotSampler:
    """Paced, retried single-spot read for the sensor transport."""

    def __init__(
        self,
        attempts: int = SPOT_READ_ATTEMPTS,
        retry_pause: float = SPOT_RETRY_PAUSE_SECONDS,
        min_duration: float = MIN_SPOT_DURATION_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.attempts = attempts
        self.retry_pause = retry_pause
        self.min_duration = min_duration
        self.sleep = sleep
        self.clock = clock

    async def _read_once(self, read_once: Callable[[], Awaitable[Any]]) -> Optional[SpotSample]:
        try:
            raw = await read_once()
        except Exception as e:
            logger.warning(f"Spot read failed: {e.__class__.__name__}: {e}")
            return None
        if raw is None:
            return None
        sample = raw if isinstance(raw, SpotSample) else SpotSample.from_dict(raw) if isinstance(raw, dict) else None
        if sample is None:
            logger.warning("Spot read returned a non-object payload")
            return None
        if sample.rejected:
            logger.warning(f"Sensor reported ok=false: {sample.error or 'no detail'}")
            return None
        if not sample.has_complete_npk:
            logger.warning("Spot read is missing numeric N, P or K")
            return None
        return sample

    async def read_spot(self, read_once: Callable[[], Awaitable[Any]]) -> Optional[SpotSample]:
        """Returns the sample, or None when every attempt failed."""
        started = self.clock()
        sample = None
        for attempt in range(1, self.attempts + 1):
            sample = await self._read_once(read_once)
            if sample is not None:
                break
            if attempt < self.attempts:
                await self.sleep(self.retry_pause)

        elapsed = self.clock() - started
        if elapsed < self.min_duration:
            await self.sleep(self.min_duration - elapsed)
        return sample
