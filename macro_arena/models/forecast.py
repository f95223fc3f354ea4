from pydantic import BaseModel, ConfigDict, Field


class ForecastResult(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    prediction: float = Field(allow_inf_nan=False)
    unit: str = ""
    rationale: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


class JudgeResult(BaseModel):
    """Judge evaluation of one forecast.

    ``error`` is taken as reported by the judge model and is not recomputed
    from the prediction and the actual value.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    accuracy: float = Field(ge=0.0, le=1.0)
    error: float = Field(ge=0.0, allow_inf_nan=False)
    feedback: str


class PerformanceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    prediction: float = Field(allow_inf_nan=False)
    actual: float
    error: float
