"""
Rate Config Store - validated, cached commission rates

Rates live in system_settings (category "commissions") so admins can change
them without a deploy. The store is constructed explicitly and handed to its
consumers; each instance owns its cache. A rate change made through
update_rates() is visible immediately in the same process, other processes
pick it up when their TTL runs out.
"""
import asyncio
import time
from dataclasses import dataclass, asdict
from typing import Callable, Optional

from sqlalchemy import select

from ledger.core.config import settings
from ledger.core.exceptions import RateConfigurationError
from ledger.core.logging import get_logger
from ledger.db.database import AsyncSessionLocal
from ledger.db.models.system_setting import (
    SystemSetting,
    COMMISSIONS_CATEGORY,
    PLATFORM_RATE_KEY,
    BUSINESS_RATE_KEY,
    DRIVER_RATE_KEY,
)

logger = get_logger(__name__)

# Markup model: business and driver each pass through 100% of their share,
# the platform markup is charged on top of the product base.
REQUIRED_PASS_THROUGH_TOTAL = 2.0
RATE_SUM_TOLERANCE = 0.001


@dataclass(frozen=True)
class CommissionRates:
    platform: float
    business: float
    driver: float

    @property
    def allocated_total(self) -> float:
        """Sum the model constrains; the platform markup is not part of it."""
        return self.business + self.driver

    @property
    def sum_deviation(self) -> float:
        return abs(self.allocated_total - REQUIRED_PASS_THROUGH_TOTAL)

    def validate(self) -> None:
        """Raise RateConfigurationError unless every rate is in range and the shares sum up."""
        if not 0.0 <= self.platform <= 1.0:
            raise RateConfigurationError(
                f"Platform commission rate must be between 0 and 1, got {self.platform}",
                details={"platform": self.platform},
            )
        for name, value in (("business", self.business), ("driver", self.driver)):
            if not 0.0 < value <= 1.0:
                raise RateConfigurationError(
                    f"{name.capitalize()} commission rate must be in (0, 1], got {value}",
                    details={name: value},
                )
        if self.sum_deviation > RATE_SUM_TOLERANCE:
            raise RateConfigurationError(
                "Business and driver pass-through rates must sum to "
                f"{REQUIRED_PASS_THROUGH_TOTAL * 100:.0f}%, "
                f"got {self.allocated_total * 100:.2f}%",
                details=asdict(self),
            )

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def _parse_rate(rows: dict[str, str], key: str, default: float) -> float:
    raw = rows.get(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise RateConfigurationError(
            f"Commission setting {key} is not a number: {raw!r}",
            details={"key": key, "value": raw},
        )


class RateConfigStore:
    """Provides commission rates with a TTL cache and strict validation"""

    def __init__(
        self,
        session_factory: Callable = AsyncSessionLocal,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.RATE_CACHE_TTL_SECONDS
        self._clock = clock
        self._cached: Optional[CommissionRates] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def get_rates(self) -> CommissionRates:
        """Validated rates, from cache while fresh"""
        if self._cached is not None and self._clock() < self._expires_at:
            return self._cached

        async with self._lock:
            # another coroutine may have refreshed while we waited
            if self._cached is not None and self._clock() < self._expires_at:
                return self._cached

            rates = await self.load_configured_rates()
            rates.validate()
            self._cached = rates
            self._expires_at = self._clock() + self._ttl
            logger.info(
                "Commission rates loaded",
                extra_data={**rates.as_dict(), "ttl_seconds": self._ttl},
            )
            return rates

    async def load_configured_rates(self) -> CommissionRates:
        """Read the stored rates without validating or caching them."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(SystemSetting).where(SystemSetting.category == COMMISSIONS_CATEGORY)
            )
            rows = {row.key: row.value for row in result.scalars().all()}

        return CommissionRates(
            platform=_parse_rate(rows, PLATFORM_RATE_KEY, settings.DEFAULT_PLATFORM_COMMISSION_RATE),
            business=_parse_rate(rows, BUSINESS_RATE_KEY, settings.DEFAULT_BUSINESS_COMMISSION_RATE),
            driver=_parse_rate(rows, DRIVER_RATE_KEY, settings.DEFAULT_DRIVER_COMMISSION_RATE),
        )

    async def update_rates(
        self,
        platform: Optional[float] = None,
        business: Optional[float] = None,
        driver: Optional[float] = None,
        updated_by: Optional[int] = None,
    ) -> CommissionRates:
        """
        Change one or more rates from admin tooling.

        The merged rate set is validated before anything is written; the cache
        is dropped afterwards so the next read sees the new values.
        """
        current = await self.load_configured_rates()
        proposed = CommissionRates(
            platform=current.platform if platform is None else float(platform),
            business=current.business if business is None else float(business),
            driver=current.driver if driver is None else float(driver),
        )
        proposed.validate()

        async with self._session_factory() as session:
            result = await session.execute(
                select(SystemSetting).where(SystemSetting.category == COMMISSIONS_CATEGORY)
            )
            existing = {row.key: row for row in result.scalars().all()}
            for key, value in (
                (PLATFORM_RATE_KEY, proposed.platform),
                (BUSINESS_RATE_KEY, proposed.business),
                (DRIVER_RATE_KEY, proposed.driver),
            ):
                row = existing.get(key)
                if row is None:
                    session.add(SystemSetting(
                        category=COMMISSIONS_CATEGORY,
                        key=key,
                        value=str(value),
                        updated_by=updated_by,
                    ))
                else:
                    row.value = str(value)
                    row.updated_by = updated_by
            await session.commit()

        self.invalidate()
        logger.info(
            "Commission rates updated",
            extra_data={
                "old": current.as_dict(),
                "new": proposed.as_dict(),
                "updated_by": updated_by,
            },
        )
        return proposed

    def invalidate(self) -> None:
        self._cached = None
        self._expires_at = 0.0
