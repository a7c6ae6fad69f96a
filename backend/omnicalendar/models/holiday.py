"""Holiday cache model for Calendarific responses."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from omnicalendar.core.database import Base
from omnicalendar.models.base import utcnow


class HolidayCache(Base):
    """Raw Calendarific payload for one (country, year)."""

    __tablename__ = "holiday_cache"
    __table_args__ = (
        UniqueConstraint("country_code", "year", name="uq_holiday_cache_country_year"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Always stored upper-cased
    country_code: Mapped[str] = mapped_column(String(5), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    # Response body stored verbatim
    data_json: Mapped[str] = mapped_column(Text, nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<HolidayCache(country_code={self.country_code}, year={self.year})>"
