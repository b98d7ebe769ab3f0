import asyncio
from dataclasses import dataclass
from typing import List, Optional

import structlog

from codejudge.languages import CompiledLanguage, LanguageSpec, render_command
from codejudge.models import JudgeStatus, Workspace
from codejudge.runner import kill_process_group

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CompileResult:
    status: JudgeStatus
    run_command: Optional[List[str]] = None
    diagnostics: str = ""

    @property
    def ok(self) -> bool:
        return self.status == JudgeStatus.SUCCESS


def command_values(workspace: Workspace, spec: LanguageSpec) -> dict:
    workdir = workspace.path.resolve()
    return {
        "source": spec.source_name,
        "stem": spec.source_stem,
        "binary": str(workdir / spec.source_stem),
        "workdir": str(workdir),
    }


def run_command_for(workspace: Workspace, spec: LanguageSpec) -> List[str]:
    return render_command(spec.run_command, **command_values(workspace, spec))


async def compile_source(workspace: Workspace, spec: LanguageSpec) -> CompileResult:
    """Build the workspace's source, returning the command that runs it.

    Interpreted languages skip straight to the run command.
    """
    if not isinstance(spec, CompiledLanguage):
        return CompileResult(JudgeStatus.SUCCESS, run_command=run_command_for(workspace, spec))

    cmd = render_command(spec.compile_command, **command_values(workspace, spec))
    log = logger.bind(workspace=workspace.id, language=spec.id)
    log.info("compile.start", command=" ".join(cmd))

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workspace.path),
            start_new_session=True,
        )
    except OSError as e:
        log.error("compile.spawn_failed", error=str(e))
        return CompileResult(JudgeStatus.INTERNAL_ERROR, diagnostics=f"Compiler unavailable: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=spec.compile_timeout_ms / 1000.0
        )
    except asyncio.TimeoutError:
        kill_process_group(process)
        await process.wait()
        log.info("compile.timeout", timeout_ms=spec.compile_timeout_ms)
        return CompileResult(JudgeStatus.COMPILATION_ERROR, diagnostics="Compilation timed out")
    finally:
        kill_process_group(process)

    if process.returncode != 0:
        diagnostics = stderr.decode("utf-8", errors="replace") or stdout.decode("utf-8", errors="replace")
        log.info("compile.failed", exit_code=process.returncode)
        return CompileResult(
            JudgeStatus.COMPILATION_ERROR,
            diagnostics=diagnostics or f"Compilation failed with exit code {process.returncode}",
        )

    return CompileResult(JudgeStatus.SUCCESS, run_command=run_command_for(workspace, spec))

