"""Strict schema bases shared by TutorDesk request and response DTOs."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Response base: unknown fields are an error, assignments are re-validated."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request base; clients sending unexpected fields get a 422."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)
