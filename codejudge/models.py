import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


class JudgeStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    WRONG_ANSWER = "WRONG_ANSWER"
    TIME_LIMIT_EXCEEDED = "TIME_LIMIT_EXCEEDED"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    COMPILATION_ERROR = "COMPILATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Failure precedence used when no test case passed, most severe first
FAILURE_PRECEDENCE = (
    JudgeStatus.COMPILATION_ERROR,
    JudgeStatus.TIME_LIMIT_EXCEEDED,
    JudgeStatus.RUNTIME_ERROR,
    JudgeStatus.WRONG_ANSWER,
)


@dataclass(frozen=True)
class Workspace:
    id: str
    path: Path


@dataclass(frozen=True)
class ExecutionOutcome:
    classification: JudgeStatus
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    killed_by_timeout: bool = False
    runtime_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.classification == JudgeStatus.SUCCESS

    @classmethod
    def failure(cls, classification: JudgeStatus, error: str, runtime_ms: int = 0) -> "ExecutionOutcome":
        return cls(classification=classification, error=error, runtime_ms=runtime_ms)


@dataclass(frozen=True)
class TestCase:
    """One (input, expected output) pair.

    ``input`` or ``expected_output`` may be None when the caller omitted
    them; such a case is judged as an internal error instead of failing
    the whole batch.
    """

    __test__ = False  # not a pytest class

    input: Optional[str]
    expected_output: Optional[str]
    points: int = 1


@dataclass(frozen=True)
class CaseResult:
    index: int
    passed: bool
    status: JudgeStatus
    outcome: ExecutionOutcome
    points: int
    expected_output: str = ""
    actual_output: str = ""


@dataclass(frozen=True)
class JudgeVerdict:
    status: JudgeStatus
    total_score: int
    max_score: int
    case_results: Tuple[CaseResult, ...] = field(default_factory=tuple)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == JudgeStatus.SUCCESS

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.case_results if r.passed)

    @property
    def average_runtime_ms(self) -> float:
        if not self.case_results:
            return 0
        return sum(r.outcome.runtime_ms for r in self.case_results) / len(self.case_results)
