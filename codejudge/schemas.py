from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from codejudge.models import CaseResult, ExecutionOutcome, JudgeStatus, JudgeVerdict


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----- Requests -----

class ExecuteRequest(WireModel):
    language: str = Field(min_length=1)
    code: str = Field(min_length=1)
    input: Optional[str] = None
    time_limit_ms: Optional[int] = Field(default=None, gt=0)


class TestCaseIn(WireModel):
    # Missing fields are judged as a per-case internal error, not rejected
    input: Optional[str] = None
    expected_output: Optional[str] = None
    points: int = Field(default=1, ge=0)


class JudgeRequest(WireModel):
    language: str = Field(min_length=1)
    code: str = Field(min_length=1)
    test_cases: List[TestCaseIn] = Field(min_length=1)
    time_limit_ms: Optional[int] = Field(default=None, gt=0)


class SingleTestRequest(WireModel):
    language: str = Field(min_length=1)
    code: str = Field(min_length=1)
    input: Optional[str] = None
    expected_output: str
    time_limit_ms: Optional[int] = Field(default=None, gt=0)


# ----- Responses -----

class ExecuteResponse(WireModel):
    success: bool
    output: str
    error: Optional[str] = None
    runtime_ms: int
    memory: int = 0  # not measured
    status: JudgeStatus

    @classmethod
    def from_outcome(cls, outcome: ExecutionOutcome) -> "ExecuteResponse":
        return cls(
            success=outcome.succeeded,
            output=outcome.stdout,
            error=outcome.error,
            runtime_ms=outcome.runtime_ms,
            status=outcome.classification,
        )


class TestCaseResultOut(WireModel):
    passed: bool
    expected_output: str
    actual_output: str
    points: int
    runtime_ms: int
    status: JudgeStatus
    error: Optional[str] = None
    test_case_index: int

    @classmethod
    def from_result(cls, result: CaseResult) -> "TestCaseResultOut":
        return cls(
            passed=result.passed,
            expected_output=result.expected_output,
            actual_output=result.actual_output,
            points=result.points,
            runtime_ms=result.outcome.runtime_ms,
            status=result.status,
            # compile diagnostics are reported once on the verdict
            error=None if result.status == JudgeStatus.COMPILATION_ERROR else result.outcome.error,
            test_case_index=result.index,
        )


class JudgeResponse(WireModel):
    success: bool
    status: JudgeStatus
    total_score: int
    max_score: int
    test_cases_passed: int
    total_test_cases: int
    average_runtime_ms: float
    max_memory: int = 0  # not measured
    test_case_results: List[TestCaseResultOut]
    error: Optional[str] = None

    @classmethod
    def from_verdict(cls, verdict: JudgeVerdict) -> "JudgeResponse":
        return cls(
            success=verdict.success,
            status=verdict.status,
            total_score=verdict.total_score,
            max_score=verdict.max_score,
            test_cases_passed=verdict.passed_count,
            total_test_cases=len(verdict.case_results),
            average_runtime_ms=verdict.average_runtime_ms,
            test_case_results=[TestCaseResultOut.from_result(r) for r in verdict.case_results],
            error=verdict.error,
        )


class SingleTestResponse(WireModel):
    success: bool
    passed: bool
    output: str
    expected_output: str
    actual_output: str
    error: Optional[str] = None
    runtime_ms: int
    memory: int = 0
    status: JudgeStatus
    points: int

    @classmethod
    def from_result(cls, result: CaseResult, diagnostics: Optional[str] = None) -> "SingleTestResponse":
        return cls(
            success=result.passed,
            passed=result.passed,
            output=result.outcome.stdout,
            expected_output=result.expected_output,
            actual_output=result.actual_output,
            error=diagnostics if result.status == JudgeStatus.COMPILATION_ERROR else result.outcome.error,
            runtime_ms=result.outcome.runtime_ms,
            status=result.status,
            points=result.points,
        )


class LanguageOut(WireModel):
    id: str
    display_name: str
    extension: str
    default_timeout_ms: int
    compiled: bool
    template: str


class HealthResponse(WireModel):
    status: str
    supported_languages: List[str]
    uptime: float


class ErrorResponse(WireModel):
    success: bool = False
    error: str
    status: Optional[JudgeStatus] = None
