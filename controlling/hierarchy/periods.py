"""
Period comparison: the previous-period window and the hierarchy request model.
"""

from datetime import date, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


class DatePreset(str, Enum):
    """Date range presets offered by the dashboard filters"""
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    LAST_12_WEEKS = "last_12_weeks"
    LAST_12_MONTHS = "last_12_months"
    YEAR = "year"
    CUSTOM = "custom"


def _one_year_back(day: date) -> date:
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        # Feb 29 rolls over to Mar 1
        return date(day.year - 1, 3, 1)


def previous_period(start: date, end: date, preset: DatePreset = DatePreset.CUSTOM) -> Tuple[date, date]:
    """
    Comparison window for [start, end].

    The `year` preset compares against the same dates one year earlier; every
    other preset uses the window of equal length ending the day before `start`.
    """
    if end < start:
        raise ValueError("end must not be before start")
    if preset == DatePreset.YEAR:
        return _one_year_back(start), _one_year_back(end)

    previous_end = start - timedelta(days=1)
    return previous_end - (end - start), previous_end


class HierarchyRequest(BaseModel):
    """Scope and date range of one hierarchy fetch"""

    company_ids: List[str] = Field(default_factory=list, description="Companies in scope")
    start_date: date
    end_date: date
    preset: DatePreset = DatePreset.CUSTOM
    previous_start: Optional[date] = Field(default=None, description="Explicit comparison start")
    previous_end: Optional[date] = Field(default=None, description="Explicit comparison end")
    brand_ids: List[str] = Field(default_factory=list, description="Brand filter, empty for all")
    address_ids: List[str] = Field(default_factory=list, description="Address filter, empty for all")
    channel_ids: List[str] = Field(default_factory=list, description="Portal filter, empty for all")

    @field_validator("company_ids", "brand_ids", "address_ids", "channel_ids", mode="before")
    @classmethod
    def normalize_ids(cls, v):
        """Stringify ids and drop blanks"""
        if v is None:
            return []
        return [str(item).strip() for item in v if item is not None and str(item).strip()]

    @model_validator(mode="after")
    def check_ranges(self) -> "HierarchyRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if (self.previous_start is None) != (self.previous_end is None):
            raise ValueError("previous_start and previous_end must be given together")
        if self.previous_start is not None and self.previous_end < self.previous_start:
            raise ValueError("previous_end must not be before previous_start")
        return self

    @property
    def previous_range(self) -> Tuple[date, date]:
        if self.previous_start is not None and self.previous_end is not None:
            return self.previous_start, self.previous_end
        return previous_period(self.start_date, self.end_date, self.preset)

    @property
    def request_key(self) -> Tuple[str, ...]:
        """Stable identity of the request, independent of id order"""
        previous_start, previous_end = self.previous_range
        return (
            self.start_date.isoformat(),
            self.end_date.isoformat(),
            self.preset.value,
            previous_start.isoformat(),
            previous_end.isoformat(),
            ",".join(sorted(set(self.company_ids))),
            ",".join(sorted(set(self.brand_ids))),
            ",".join(sorted(set(self.address_ids))),
            ",".join(sorted(set(self.channel_ids))),
        )
