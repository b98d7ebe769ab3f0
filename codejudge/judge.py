import traceback
import uuid
from typing import List, Optional, Sequence

import structlog

from codejudge import runner
from codejudge.compiler import CompileResult, compile_source
from codejudge.errors import BadRequest
from codejudge.languages import LanguageRegistry
from codejudge.models import (
    FAILURE_PRECEDENCE,
    CaseResult,
    ExecutionOutcome,
    JudgeStatus,
    JudgeVerdict,
    TestCase,
)
from codejudge.workspace import WorkspaceManager

logger = structlog.get_logger(__name__)

DEFAULT_MAX_TIME_LIMIT = 10000  # ms


def normalize_output(text: Optional[str]) -> str:
    """Unify line endings and trim surrounding whitespace."""
    if text is None:
        return ""
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def outputs_match(actual: str, expected: str) -> bool:
    return normalize_output(actual) == normalize_output(expected)


def overall_status(results: Sequence[CaseResult]) -> JudgeStatus:
    passed = sum(1 for r in results if r.passed)
    if results and passed == len(results):
        return JudgeStatus.SUCCESS
    if passed:
        return JudgeStatus.PARTIAL_SUCCESS
    statuses = {r.status for r in results}
    for status in FAILURE_PRECEDENCE:
        if status in statuses:
            return status
    return JudgeStatus.INTERNAL_ERROR


def summarize(status: JudgeStatus, passed: int, total: int) -> Optional[str]:
    if status == JudgeStatus.SUCCESS:
        return None
    if status == JudgeStatus.PARTIAL_SUCCESS:
        return f"Partially correct. Passed {passed} out of {total} test cases."
    if status == JudgeStatus.WRONG_ANSWER:
        return f"Wrong answer. Passed {passed} out of {total} test cases."
    if status == JudgeStatus.TIME_LIMIT_EXCEEDED:
        return "Your code exceeded the time limit. Consider optimizing your algorithm."
    if status == JudgeStatus.RUNTIME_ERROR:
        return "Your code encountered a runtime error during execution."
    if status == JudgeStatus.COMPILATION_ERROR:
        return "Your code failed to compile."
    return "An internal error occurred while judging your submission."


def not_run_verdict(test_cases: Sequence[TestCase], status: JudgeStatus, error: Optional[str] = None) -> JudgeVerdict:
    """Verdict for a submission that never reached the run stage."""
    outcome = ExecutionOutcome(classification=status)
    results = tuple(
        CaseResult(
            index=idx,
            passed=False,
            status=status,
            outcome=outcome,
            points=0,
            expected_output=normalize_output(case.expected_output),
        )
        for idx, case in enumerate(test_cases)
    )
    return JudgeVerdict(
        status=status,
        total_score=0,
        max_score=sum(case.points for case in test_cases),
        case_results=results,
        error=error or summarize(status, 0, len(results)),
    )


class Judge:
    """Compiles one submission once and runs it against test cases.

    The language is resolved in the constructor so an unknown id fails
    with ``UnsupportedLanguage`` before any workspace is created.
    """

    def __init__(
        self,
        language: str,
        code: str,
        registry: LanguageRegistry,
        workspaces: WorkspaceManager,
        submission_id: Optional[str] = None,
        max_time_limit: int = DEFAULT_MAX_TIME_LIMIT,
        max_stdout: int = runner.MAX_STDOUT_SIZE,
        max_stderr: int = runner.MAX_STDERR_SIZE,
    ):
        self.spec = registry.resolve(language)
        if code is None or not code.strip():
            raise BadRequest("Code is required")
        self.code = code
        self.workspaces = workspaces
        self.submission_id = submission_id or uuid.uuid4().hex[:12]
        self.max_time_limit = max_time_limit
        self.max_stdout = max_stdout
        self.max_stderr = max_stderr
        self.log = logger.bind(submission=self.submission_id, language=self.spec.id)

    def time_limit(self, requested: Optional[int]) -> int:
        if requested is not None and requested <= 0:
            raise BadRequest("Time limit must be a positive number of milliseconds")
        return min(requested or self.spec.default_timeout_ms, self.max_time_limit)

    async def run(self, test_cases: Sequence[TestCase], time_limit: Optional[int] = None) -> JudgeVerdict:
        if not test_cases:
            raise BadRequest("Test cases are required and must be a non-empty array")
        limit = self.time_limit(time_limit)
        max_score = sum(case.points for case in test_cases)
        self.log.info("judge.start", cases=len(test_cases), time_limit=limit)

        with self.workspaces.scoped() as workspace:
            self.log.info("judge.compiling", workspace=workspace.id)
            compiled = await self._prepare(workspace)
            if not compiled.ok:
                return not_run_verdict(test_cases, compiled.status, compiled.diagnostics)

            results: List[CaseResult] = []
            for idx, case in enumerate(test_cases):
                result = await self._run_single_test(workspace, compiled, idx, case, limit)
                self.log.info("judge.case", case=idx, status=result.status.value, runtime_ms=result.outcome.runtime_ms)
                results.append(result)

        status = overall_status(results)
        passed = sum(1 for r in results if r.passed)
        verdict = JudgeVerdict(
            status=status,
            total_score=sum(r.points for r in results),
            max_score=max_score,
            case_results=tuple(results),
            error=summarize(status, passed, len(results)),
        )
        self.log.info("judge.done", status=status.value, score=verdict.total_score, max_score=max_score)
        return verdict

    async def execute(self, stdin: str = "", time_limit: Optional[int] = None) -> ExecutionOutcome:
        """Single run without comparison."""
        limit = self.time_limit(time_limit)
        with self.workspaces.scoped() as workspace:
            compiled = await self._prepare(workspace)
            if not compiled.ok:
                return ExecutionOutcome.failure(compiled.status, compiled.diagnostics)
            return await runner.run(
                workspace, compiled.run_command, stdin or "", limit,
                max_stdout=self.max_stdout, max_stderr=self.max_stderr,
            )

    async def _prepare(self, workspace) -> CompileResult:
        self.workspaces.write_source(workspace, self.spec, self.code)
        compiled = await compile_source(workspace, self.spec)
        if not compiled.ok:
            self.log.info("judge.compile_failed", status=compiled.status.value, diagnostics=compiled.diagnostics[:200])
        return compiled

    async def _run_single_test(self, workspace, compiled: CompileResult, idx: int,
                               case: TestCase, time_limit: int) -> CaseResult:
        if case.input is None or case.expected_output is None:
            missing = "input" if case.input is None else "expected output"
            return CaseResult(
                index=idx,
                passed=False,
                status=JudgeStatus.INTERNAL_ERROR,
                outcome=ExecutionOutcome.failure(JudgeStatus.INTERNAL_ERROR, f"Test case {idx + 1} is missing {missing}"),
                points=0,
                expected_output=normalize_output(case.expected_output),
            )

        try:
            outcome = await runner.run(
                workspace, compiled.run_command, case.input, time_limit,
                max_stdout=self.max_stdout, max_stderr=self.max_stderr,
            )
        except Exception as e:
            self.log.error("judge.case_crashed", case=idx, traceback=traceback.format_exc())
            outcome = ExecutionOutcome.failure(
                JudgeStatus.INTERNAL_ERROR, f"Test case execution failed: {type(e).__name__}: {e}"
            )

        expected = normalize_output(case.expected_output)
        actual = normalize_output(outcome.stdout)
        if not outcome.succeeded:
            status = outcome.classification
            passed = False
        elif outputs_match(outcome.stdout, case.expected_output):
            status = JudgeStatus.SUCCESS
            passed = True
        else:
            status = JudgeStatus.WRONG_ANSWER
            passed = False

        return CaseResult(
            index=idx,
            passed=passed,
            status=status,
            outcome=outcome,
            points=case.points if passed else 0,
            expected_output=expected,
            actual_output=actual,
        )
