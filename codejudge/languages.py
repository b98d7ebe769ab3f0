from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from codejudge.errors import UnsupportedLanguage


@dataclass(frozen=True)
class LanguageSpec:
    """Toolchain description for one language.

    Command templates are argument lists; each argument may reference
    ``{source}`` (source file name), ``{stem}`` (source name without
    extension), ``{binary}`` (absolute path of the build output) and
    ``{workdir}`` (absolute workspace path).
    """

    id: str
    display_name: str
    extension: str
    run_command: Tuple[str, ...]
    default_timeout_ms: int = 5000
    template: str = ""
    # Top-level type name the toolchain requires, if any
    entry_symbol: Optional[str] = None

    @property
    def source_stem(self) -> str:
        return self.entry_symbol or "solution"

    @property
    def source_name(self) -> str:
        return f"{self.source_stem}.{self.extension}"


@dataclass(frozen=True)
class InterpretedLanguage(LanguageSpec):
    pass


@dataclass(frozen=True)
class CompiledLanguage(LanguageSpec):
    compile_command: Tuple[str, ...] = ()
    compile_timeout_ms: int = 30000


def render_command(template: Iterable[str], **values: str) -> List[str]:
    return [arg.format(**values) for arg in template]


DEFAULT_LANGUAGES = (
    InterpretedLanguage(
        id="python",
        display_name="Python 3",
        extension="py",
        run_command=("python3", "{source}"),
        default_timeout_ms=5000,
        template=(
            "def solve():\n"
            "    # Write your solution here\n"
            "    pass\n"
            "\n"
            "if __name__ == \"__main__\":\n"
            "    solve()\n"
        ),
    ),
    InterpretedLanguage(
        id="javascript",
        display_name="Node.js",
        extension="js",
        run_command=("node", "{source}"),
        default_timeout_ms=5000,
        template=(
            "function solve() {\n"
            "    // Write your solution here\n"
            "}\n"
            "\n"
            "solve();\n"
        ),
    ),
    CompiledLanguage(
        id="java",
        display_name="Java",
        extension="java",
        compile_command=("javac", "{source}"),
        run_command=("java", "-cp", "{workdir}", "{stem}"),
        default_timeout_ms=10000,
        entry_symbol="Solution",
        template=(
            "import java.util.*;\n"
            "import java.io.*;\n"
            "\n"
            "public class Solution {\n"
            "    public static void main(String[] args) throws IOException {\n"
            "        Scanner sc = new Scanner(System.in);\n"
            "        // Write your solution here\n"
            "        sc.close();\n"
            "    }\n"
            "}\n"
        ),
    ),
    CompiledLanguage(
        id="cpp",
        display_name="C++",
        extension="cpp",
        compile_command=("g++", "-std=c++17", "-O2", "-o", "{binary}", "{source}"),
        run_command=("{binary}",),
        default_timeout_ms=5000,
        template=(
            "#include <iostream>\n"
            "using namespace std;\n"
            "\n"
            "int main() {\n"
            "    ios_base::sync_with_stdio(false);\n"
            "    cin.tie(NULL);\n"
            "    // Write your solution here\n"
            "    return 0;\n"
            "}\n"
        ),
    ),
    CompiledLanguage(
        id="c",
        display_name="C",
        extension="c",
        compile_command=("gcc", "-std=c11", "-O2", "-o", "{binary}", "{source}"),
        run_command=("{binary}",),
        default_timeout_ms=5000,
        template=(
            "#include <stdio.h>\n"
            "\n"
            "int main() {\n"
            "    // Write your solution here\n"
            "    return 0;\n"
            "}\n"
        ),
    ),
    # go run builds and runs in one step, so the run limit covers the build
    InterpretedLanguage(
        id="go",
        display_name="Go",
        extension="go",
        run_command=("go", "run", "{source}"),
        default_timeout_ms=5000,
        template=(
            "package main\n"
            "\n"
            "import \"fmt\"\n"
            "\n"
            "func main() {\n"
            "    // Write your solution here\n"
            "    fmt.Println()\n"
            "}\n"
        ),
    ),
    CompiledLanguage(
        id="rust",
        display_name="Rust",
        extension="rs",
        compile_command=("rustc", "-O", "-o", "{binary}", "{source}"),
        run_command=("{binary}",),
        default_timeout_ms=10000,
        template=(
            "use std::io;\n"
            "\n"
            "fn main() {\n"
            "    // Write your solution here\n"
            "}\n"
        ),
    ),
)


class LanguageRegistry:
    """Read-only lookup from language id to toolchain."""

    def __init__(self, languages: Iterable[LanguageSpec] = DEFAULT_LANGUAGES):
        table: Dict[str, LanguageSpec] = {}
        for spec in languages:
            key = spec.id.lower()
            if key in table:
                raise ValueError(f"Duplicate language id: {spec.id}")
            table[key] = spec
        self._languages: Mapping[str, LanguageSpec] = MappingProxyType(table)

    def resolve(self, language_id: str) -> LanguageSpec:
        spec = self._languages.get((language_id or "").strip().lower())
        if spec is None:
            raise UnsupportedLanguage(language_id, self.ids())
        return spec

    def ids(self) -> List[str]:
        return list(self._languages)

    def __iter__(self):
        return iter(self._languages.values())

    def __len__(self) -> int:
        return len(self._languages)

    def __contains__(self, language_id) -> bool:
        return isinstance(language_id, str) and language_id.strip().lower() in self._languages
