import asyncio
import re
import shutil
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Set

import structlog

from codejudge.languages import LanguageSpec
from codejudge.models import Workspace

logger = structlog.get_logger(__name__)

_PUBLIC_TYPE = re.compile(r"\bpublic\s+((?:final\s+|abstract\s+)*)class\s+([A-Za-z_$][\w$]*)")
_ANY_TYPE = re.compile(r"\bclass\s+([A-Za-z_$][\w$]*)")
# Text blocks, string and char literals, line and block comments
_NON_CODE = re.compile(
    r'"""[\s\S]*?"""'
    r'|"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])+'"
    r"|//[^\n]*"
    r"|/\*[\s\S]*?\*/"
)


def _blank_non_code(code: str) -> str:
    return _NON_CODE.sub(lambda m: " " * len(m.group(0)), code)


def _rename_in_code(code: str, old_name: str, new_name: str) -> str:
    identifier = re.compile(rf"(?<![\w$]){re.escape(old_name)}(?![\w$])")
    parts = []
    pos = 0
    for literal in _NON_CODE.finditer(code):
        parts.append(identifier.sub(new_name, code[pos:literal.start()]))
        parts.append(literal.group(0))
        pos = literal.end()
    parts.append(identifier.sub(new_name, code[pos:]))
    return "".join(parts)


def enforce_entry_symbol(code: str, symbol: str) -> str:
    """Rename the program's top-level type to ``symbol``.

    The public class wins; without one the first declared class is used.
    References to the old name in code are renamed too so constructors and
    static calls keep compiling. Literals and comments are left as written.
    """
    searchable = _blank_non_code(code)
    match = _PUBLIC_TYPE.search(searchable)
    if match:
        old_name = match.group(2)
    else:
        match = _ANY_TYPE.search(searchable)
        if not match:
            return code
        old_name = match.group(1)
    if old_name == symbol:
        return code
    return _rename_in_code(code, old_name, symbol)


class WorkspaceManager:
    """Creates, fills and removes per-execution directories."""

    def __init__(self, root: Path, retention_minutes: int = 10):
        self.root = Path(root)
        self.retention_seconds = retention_minutes * 60
        self._active: Set[str] = set()
        self.root.mkdir(parents=True, exist_ok=True)

    def acquire(self) -> Workspace:
        workspace_id = uuid.uuid4().hex
        path = self.root / workspace_id
        path.mkdir(parents=True)
        self._active.add(workspace_id)
        logger.debug("workspace.acquired", workspace=workspace_id)
        return Workspace(id=workspace_id, path=path)

    def write_source(self, workspace: Workspace, spec: LanguageSpec, code: str) -> Path:
        if spec.entry_symbol:
            code = enforce_entry_symbol(code, spec.entry_symbol)
        source = workspace.path / spec.source_name
        source.write_text(code, encoding="utf-8")
        return source

    def release(self, workspace: Workspace) -> None:
        """Delete the workspace; errors are logged, never raised."""
        self._active.discard(workspace.id)
        try:
            shutil.rmtree(workspace.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("workspace.release_failed", workspace=workspace.id, error=str(e))

    @contextmanager
    def scoped(self) -> Iterator[Workspace]:
        workspace = self.acquire()
        try:
            yield workspace
        finally:
            self.release(workspace)

    def sweep(self, now: Optional[float] = None) -> int:
        """Remove orphaned workspaces older than the retention window."""
        if now is None:
            now = time.time()
        removed = 0
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return 0
        for entry in entries:
            if entry.name in self._active:
                continue
            try:
                age = now - entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if age <= self.retention_seconds:
                continue
            try:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning("workspace.sweep_failed", path=str(entry), error=str(e))
        if removed:
            logger.info("workspace.swept", removed=removed)
        return removed

    async def sweep_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("workspace.sweep_crashed")
