"""
Static checks applied to submitted code before it reaches the model.

This is a pattern-based filter, not a sandbox: the code is never
executed, the goal is to keep obviously unsafe snippets and prompt
injection markers out of the grading prompt.
"""

import re
from dataclasses import dataclass, field

MAX_CODE_BYTES = 10240

DENIED_MODULES = (
    "os",
    "sys",
    "subprocess",
    "socket",
    "requests",
    "urllib",
    "shutil",
    "pathlib",
    "ctypes",
    "multiprocessing",
    "importlib",
    "builtins",
    "http",
    "ftplib",
    "telnetlib",
    "pty",
)

# "import a, b.c as d" and "from a.b import c", at line start or after ";"
_IMPORT_RE = re.compile(
    r"(?:^|;)[ \t]*(?:import[ \t]+(?P<names>[\w \t,.]+)|from[ \t]+(?P<source>[\w.]+)[ \t]+import\b)",
    re.IGNORECASE | re.MULTILINE,
)
_FILE_OPEN_RE = re.compile(r"(?<![\w.])(?:open|file)\s*\(", re.IGNORECASE)
_DYNAMIC_EXEC_RE = re.compile(
    r"(?<![\w.])(?:exec|eval|__import__)\s*\(",
    re.IGNORECASE,
)

_INJECTION_PATTERNS = (
    re.compile(r"```"),
    re.compile(r"\[/?INST\]", re.IGNORECASE),
    re.compile(r"<</?SYS>>", re.IGNORECASE),
    re.compile(r"<\|.*?\|>"),
)


@dataclass(frozen=True)
class GuardReport:
    """Outcome of validate(); violations are user-facing sentences."""

    ok: bool
    violations: list[str] = field(default_factory=list)


def code_size(code: str) -> int:
    return len(code.encode("utf-8"))


def _imported_modules(code: str) -> list[str]:
    modules = []
    for match in _IMPORT_RE.finditer(code):
        if match.group("source"):
            modules.append(match.group("source"))
            continue
        for part in match.group("names").split(","):
            tokens = part.split()
            if tokens:
                modules.append(tokens[0])
    # only the top-level package matters: "os.path" -> "os"
    return [name.split(".")[0].lower() for name in modules]


def validate(code: str) -> GuardReport:
    """
    Check code against the size limit and the unsafe-pattern rules.

    Args:
        code: Submitted source code

    Returns:
        GuardReport: ok flag and every violation found
    """
    violations: list[str] = []

    if code_size(code) > MAX_CODE_BYTES:
        violations.append("Code exceeds maximum size of 10KB")

    imported = set(_imported_modules(code))
    for module in DENIED_MODULES:
        if module in imported:
            violations.append(
                f"Import of '{module}' is not allowed for security reasons"
            )

    if _FILE_OPEN_RE.search(code):
        violations.append("File operations are not allowed")

    if _DYNAMIC_EXEC_RE.search(code):
        violations.append(
            "Dynamic code execution (exec, eval, __import__) is not allowed"
        )

    return GuardReport(ok=not violations, violations=violations)


def sanitize(code: str) -> str:
    """
    Strip prompt injection markers and truncate to the size limit.

    Args:
        code: Submitted source code

    Returns:
        str: Code safe to embed in the grading prompt
    """
    cleaned = code
    # removing one marker can join the pieces of another
    while True:
        previous = cleaned
        for pattern in _INJECTION_PATTERNS:
            cleaned = pattern.sub("", cleaned)
        if cleaned == previous:
            break

    encoded = cleaned.encode("utf-8")
    if len(encoded) > MAX_CODE_BYTES:
        # drop a multi-byte character cut in half by the slice
        cleaned = encoded[:MAX_CODE_BYTES].decode("utf-8", errors="ignore")
    return cleaned
