import asyncio
import secrets
import time
from asyncio import Semaphore
from typing import Dict, List, Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from codejudge.config import Settings, get_settings
from codejudge.errors import BadRequest
from codejudge.judge import Judge, not_run_verdict
from codejudge.languages import CompiledLanguage, LanguageRegistry
from codejudge.log import setup_logging
from codejudge.models import JudgeStatus, TestCase
from codejudge.schemas import (
    ErrorResponse,
    ExecuteRequest,
    ExecuteResponse,
    HealthResponse,
    JudgeRequest,
    JudgeResponse,
    LanguageOut,
    SingleTestRequest,
    SingleTestResponse,
)
from codejudge.workspace import WorkspaceManager

logger = structlog.get_logger(__name__)


class RateLimiter:
    """Fixed-window request counter per caller."""

    def __init__(self, max_requests: int, window_ms: int):
        self.max_requests = max_requests
        self.window = window_ms / 1000.0
        self._windows: Dict[str, Tuple[float, int]] = {}

    def hit(self, key: str, now: Optional[float] = None) -> bool:
        now = now if now is not None else time.monotonic()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window:
            started, count = now, 0
        if count >= self.max_requests:
            self._windows[key] = (started, count)
            return False
        self._windows[key] = (started, count + 1)
        # Drop stale windows so the table does not grow without bound
        if len(self._windows) > 10000:
            self._windows = {k: v for k, v in self._windows.items() if now - v[0] < self.window}
        return True


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump(by_alias=True))


class BodySizeLimit:
    """Refuses request bodies over ``max_bytes``, declared or streamed."""

    def __init__(self, app: ASGIApp, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        message = f"Request body exceeds {self.max_bytes} bytes"
        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > self.max_bytes:
            await _error(413, message)(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            event = await receive()
            if event["type"] == "http.request":
                received += len(event.get("body", b""))
                if received > self.max_bytes:
                    # Chunked uploads carry no length up front
                    raise HTTPException(413, message)
            return event

        await self.app(scope, limited_receive, send)


async def require_api_key(request: Request):
    settings: Settings = request.app.state.settings
    supplied = request.headers.get(settings.api_key_header) or request.headers.get("Authorization")
    if supplied and supplied.startswith("Bearer "):
        supplied = supplied[len("Bearer "):]
    if not supplied or not secrets.compare_digest(supplied.encode(), settings.api_secret_key.encode()):
        raise HTTPException(401, "Invalid API key")


async def rate_limit(request: Request):
    caller = request.client.host if request.client else "unknown"
    if not request.app.state.rate_limiter.hit(caller):
        raise HTTPException(429, "Too many requests, please try again later.")


def _check_lengths(settings: Settings, code: str, stdin: Optional[str] = None):
    if len(code) > settings.max_code_length:
        raise BadRequest(f"Code length exceeds maximum limit of {settings.max_code_length} characters")
    if stdin is not None and len(stdin) > settings.max_input_length:
        raise BadRequest(f"Input length exceeds maximum limit of {settings.max_input_length} characters")


def create_app(settings: Optional[Settings] = None, registry: Optional[LanguageRegistry] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Code Execution API")
    app.state.settings = settings
    app.state.registry = registry or LanguageRegistry()
    app.state.workspaces = WorkspaceManager(settings.workspace_root, settings.workspace_retention_minutes)
    app.state.judge_semaphore = Semaphore(settings.max_concurrent_judges)
    app.state.rate_limiter = RateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_ms)
    app.state.started_at = time.monotonic()
    app.state.sweeper = None

    guarded = [Depends(require_api_key), Depends(rate_limit)]

    @app.on_event("startup")
    async def startup():
        setup_logging(settings.log_level, settings.log_json)
        workspaces: WorkspaceManager = app.state.workspaces
        workspaces.sweep()
        app.state.sweeper = asyncio.create_task(workspaces.sweep_forever(settings.cleanup_interval_seconds))
        logger.info(
            "server.started",
            languages=app.state.registry.ids(),
            workspace_root=str(workspaces.root),
            cleanup_interval_s=settings.cleanup_interval_seconds,
        )

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.sweeper:
            app.state.sweeper.cancel()

    app.add_middleware(BodySizeLimit, max_bytes=settings.max_body_bytes)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Malformed request body"
        return _error(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    # ===== Status APIs =====

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="healthy",
            supported_languages=app.state.registry.ids(),
            uptime=round(time.monotonic() - app.state.started_at, 3),
        )

    @app.get("/languages", response_model=List[LanguageOut])
    async def languages():
        return [
            LanguageOut(
                id=spec.id,
                display_name=spec.display_name,
                extension=spec.extension,
                default_timeout_ms=spec.default_timeout_ms,
                compiled=isinstance(spec, CompiledLanguage),
                template=spec.template,
            )
            for spec in app.state.registry
        ]

    # ===== Execution APIs =====

    @app.post("/execute", response_model=ExecuteResponse, dependencies=guarded)
    async def execute(req: ExecuteRequest):
        try:
            _check_lengths(settings, req.code, req.input)
            judge = _new_judge(req.language, req.code)
            judge.log.info("execute.received", code_length=len(req.code))
            async with app.state.judge_semaphore:
                outcome = await judge.execute(req.input or "", req.time_limit_ms)
            return ExecuteResponse.from_outcome(outcome)
        except BadRequest as e:
            return _error(400, str(e))
        except Exception:
            logger.exception("execute.crashed", language=req.language)
            return ExecuteResponse(
                success=False,
                output="",
                error="Internal server error",
                runtime_ms=0,
                status=JudgeStatus.INTERNAL_ERROR,
            )

    @app.post("/judge", response_model=JudgeResponse, dependencies=guarded)
    async def judge(req: JudgeRequest):
        test_cases = [
            TestCase(input=tc.input, expected_output=tc.expected_output, points=tc.points)
            for tc in req.test_cases
        ]
        try:
            _check_lengths(settings, req.code)
            if len(test_cases) > settings.max_test_cases:
                raise BadRequest(f"At most {settings.max_test_cases} test cases are allowed")
            judge = _new_judge(req.language, req.code)
            judge.log.info("judge.received", code_length=len(req.code), cases=len(test_cases))
            async with app.state.judge_semaphore:
                verdict = await judge.run(test_cases, req.time_limit_ms)
        except BadRequest as e:
            return _error(400, str(e))
        except Exception:
            logger.exception("judge.crashed", language=req.language)
            verdict = not_run_verdict(test_cases, JudgeStatus.INTERNAL_ERROR, "Internal server error")
        return JudgeResponse.from_verdict(verdict)

    @app.post("/test", response_model=SingleTestResponse, dependencies=guarded)
    async def single_test(req: SingleTestRequest):
        test_cases = [TestCase(input=req.input or "", expected_output=req.expected_output)]
        try:
            _check_lengths(settings, req.code, req.input)
            judge = _new_judge(req.language, req.code)
            async with app.state.judge_semaphore:
                verdict = await judge.run(test_cases, req.time_limit_ms)
        except BadRequest as e:
            return _error(400, str(e))
        except Exception:
            logger.exception("test.crashed", language=req.language)
            verdict = not_run_verdict(test_cases, JudgeStatus.INTERNAL_ERROR, "Internal server error")
        return SingleTestResponse.from_result(verdict.case_results[0], verdict.error)

    def _new_judge(language: str, code: str) -> Judge:
        return Judge(
            language,
            code,
            registry=app.state.registry,
            workspaces=app.state.workspaces,
            max_time_limit=settings.max_execution_time_ms,
            max_stdout=settings.max_stdout_bytes,
            max_stderr=settings.max_stderr_bytes,
        )

    return app


def serve():
    import uvicorn

    settings = get_settings()
    uvicorn.run("codejudge.main:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    serve()
