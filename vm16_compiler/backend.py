"""
Backend: generated Python source -> executable file.

The source is compiled with the interpreter's own byte-code compiler
first; nothing is written unless that succeeds. Output forms:

  *.py    single script with a shebang, mode 0755
  other   zipapp archive (__main__.py inside), shebang, mode 0755

Compiler output is collected as Diagnostic records. Syntax errors are
errors; SyntaxWarnings are kept as warnings and never block the build.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
import logging
import os
import stat
import tempfile
import types
import warnings
import zipapp

__all__ = ['Diagnostic', 'BackendCompilationError', 'PythonBackend', 'load_program']

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    severity: str          # 'error' or 'warning'
    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        where = ""
        if self.line is not None:
            where = f"line {self.line}"
            if self.column is not None:
                where += f", col {self.column}"
            where += ": "
        return f"{self.severity}: {where}{self.message}"


class BackendCompilationError(Exception):
    """The backend rejected the generated source. Carries every error diagnostic."""
    def __init__(self, diagnostics: List[Diagnostic]):
        self.diagnostics = diagnostics
        super().__init__(f"{len(diagnostics)} compilation error(s): "
                         + "; ".join(str(d) for d in diagnostics))


class PythonBackend:
    """Compile-checks generated source and writes a runnable file."""

    interpreter = "/usr/bin/env python3"

    def check(self, source: str, filename: str = "<vm16cc>") -> List[Diagnostic]:
        """Return all diagnostics the compiler reports for ``source``.

        compile() stops at the first SyntaxError, so at most one error is
        reported; warnings are all kept.
        """
        diagnostics: List[Diagnostic] = []
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                compile(source, filename, "exec", dont_inherit=True)
            except SyntaxError as e:
                diagnostics.append(Diagnostic("error", e.msg, e.lineno, e.offset))
            except ValueError as e:
                # e.g. source containing null bytes
                diagnostics.append(Diagnostic("error", str(e)))
        for w in caught:
            diagnostics.append(Diagnostic("warning", str(w.message), w.lineno))
        return diagnostics

    def build(self, source: str, output_path: Union[str, Path]) -> Path:
        """Write an executable for ``source`` at ``output_path``.

        Raises BackendCompilationError (and writes nothing) on any error diagnostic.
        """
        output_path = Path(output_path)
        diagnostics = self.check(source, output_path.name)
        for d in diagnostics:
            if d.severity == "warning":
                logger.warning("backend: %s", d)
        errors = [d for d in diagnostics if d.severity == "error"]
        if errors:
            raise BackendCompilationError(errors)

        if output_path.suffix == ".py":
            output_path.write_text(source, encoding="utf-8")
        else:
            with tempfile.TemporaryDirectory(prefix="vm16cc-") as tmp:
                (Path(tmp) / "__main__.py").write_text(source, encoding="utf-8")
                zipapp.create_archive(tmp, output_path, interpreter=self.interpreter)
        mode = os.stat(output_path).st_mode
        os.chmod(output_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info("Wrote %s (%d bytes)", output_path, output_path.stat().st_size)
        return output_path


def load_program(source: str, name: str = "vm16_program") -> types.ModuleType:
    """Execute generated source as a fresh module object (for in-process runs)."""
    module = types.ModuleType(name)
    code = compile(source, f"<{name}>", "exec", dont_inherit=True)
    exec(code, module.__dict__)
    return module
