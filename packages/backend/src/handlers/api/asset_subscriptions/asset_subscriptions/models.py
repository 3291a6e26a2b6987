from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

from futurecast.models.asset import parse_report_days, validate_report_times


class ScheduleUpdateRequest(BaseModel):
    report_times: List[str] = Field(default_factory=list)
    report_days: Optional[str] = None

    @field_validator("report_times")
    @classmethod
    def check_report_times(cls, value: List[str]) -> List[str]:
        return validate_report_times(value)

    @field_validator("report_days")
    @classmethod
    def check_report_days(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_report_days(value)
        return value
