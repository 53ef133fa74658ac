"""Rewrite g++ diagnostics into short, line-anchored explanations for beginners.

Only the first ``error:`` line of the compiler output is looked at, so a
student gets one thing to fix at a time. When none of the rules recognise that
line, :func:`classify` returns ``None`` and the caller shows the raw compiler
text instead.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from .models import ClassifiedDiagnostic
from .sandbox import DISPLAY_SOURCE_NAME

ERROR_MARKER = "error:"
LOCATION_RE = re.compile(r"^(?P<file>[^:\s][^:]*):(?P<line>\d+):\d+:")

# g++ quotes with ' under LANG=C and with typographic quotes under UTF-8 locales.
_QO = "['‘`]"
_QC = "['’]"

# Standard library names a beginner typically forgets to include.
STD_HEADERS: Dict[str, str] = {
    "cout": "iostream",
    "cin": "iostream",
    "cerr": "iostream",
    "clog": "iostream",
    "endl": "iostream",
    "string": "string",
    "getline": "string",
    "to_string": "string",
    "stoi": "string",
    "vector": "vector",
    "map": "map",
    "set": "set",
    "unordered_map": "unordered_map",
    "unordered_set": "unordered_set",
    "queue": "queue",
    "priority_queue": "queue",
    "stack": "stack",
    "deque": "deque",
    "pair": "utility",
    "make_pair": "utility",
    "swap": "utility",
    "sort": "algorithm",
    "reverse": "algorithm",
    "max": "algorithm",
    "min": "algorithm",
    "printf": "cstdio",
    "scanf": "cstdio",
    "puts": "cstdio",
    "sqrt": "cmath",
    "pow": "cmath",
    "setw": "iomanip",
    "setprecision": "iomanip",
}


def _expects(token: str) -> Pattern[str]:
    """Match ``expected 'X'`` or ``expected 'a', 'b' or 'X'`` for the given token."""
    return re.compile(
        r"expected (?:" + _QO + r"[^'’]+" + _QC + r"(?:,| or) )*"
        + _QO + re.escape(token) + _QC
    )


_UNDECLARED_RE = re.compile(
    _QO + r"(?P<name>[A-Za-z_]\w*)" + _QC
    + r" (?:was not declared in this scope|is not a member of " + _QO + r"std" + _QC + r")"
)


@dataclass(frozen=True)
class Rule:
    """One known compiler complaint and how to explain it."""

    name: str
    pattern: Pattern[str]
    message: str
    hint: Optional[str] = None
    when: Optional[Callable[[Dict[str, str]], bool]] = None

    def apply(self, line: str) -> Optional[Tuple[str, Optional[str]]]:
        m = self.pattern.search(line)
        if m is None:
            return None
        fields = {k: v for k, v in m.groupdict().items() if v is not None}
        if self.when is not None and not self.when(fields):
            return None
        if not fields:
            # Templates without placeholders may contain literal braces.
            return self.message, self.hint
        if "name" in fields:
            fields["header"] = STD_HEADERS.get(fields["name"], "")
        hint = self.hint.format(**fields) if self.hint else None
        return self.message.format(**fields), hint


# Evaluated top to bottom; the first match wins. The specific messages come
# before the generic "expected 'X'" ones, e.g. "expected primary-expression
# before ')' token" is an incomplete expression, not a missing parenthesis.
RULES: List[Rule] = [
    Rule(
        "unterminated_string",
        re.compile(r"missing terminating [\"'] character"),
        "Unterminated string.",
        'Every " must be closed on the same line.',
    ),
    Rule(
        "incomplete_expression",
        re.compile(r"expected primary-expression"),
        "Incomplete expression.",
        "A variable, number or function call is missing.",
    ),
    Rule(
        "extra_closing_brace",
        re.compile(r"expected declaration before " + _QO + r"\}" + _QC + r"|extraneous closing brace"),
        "Extra closing brace }.",
        "You closed a brace you never opened.",
    ),
    Rule(
        "missing_semicolon",
        _expects(";"),
        "Missing a semicolon (;).",
        "In C++ almost every statement ends with ;",
    ),
    Rule(
        "unclosed_brace",
        _expects("}"),
        "Missing a closing brace }.",
        "Every { needs a matching }.",
    ),
    Rule(
        "unclosed_parenthesis",
        _expects(")"),
        "Missing a closing parenthesis ).",
        "Check conditions and function calls.",
    ),
    Rule(
        "undeclared_std_identifier",
        _UNDECLARED_RE,
        "Identifier '{name}' is not declared. It belongs to the standard library.",
        "Add #include <{header}> at the top of the file and write std::{name} "
        "(or add: using namespace std;).",
        when=lambda fields: fields.get("name") in STD_HEADERS,
    ),
    Rule(
        "undeclared_identifier",
        _UNDECLARED_RE,
        "Identifier '{name}' is not declared.",
        "Declare it before using it and check the spelling.",
    ),
]


def classify(stderr: str, source_lines: Sequence[str]) -> Optional[ClassifiedDiagnostic]:
    """Explain the first compiler error in ``stderr``, or return ``None``."""
    for line in stderr.splitlines():
        if ERROR_MARKER not in line:
            continue

        # Errors located in a header say nothing about the submitted lines.
        m = LOCATION_RE.match(line)
        line_number = None
        if m and m.group("file") == DISPLAY_SOURCE_NAME:
            line_number = int(m.group("line"))
        source_line = None
        if line_number is not None and 1 <= line_number <= len(source_lines):
            source_line = source_lines[line_number - 1]

        for rule in RULES:
            matched = rule.apply(line)
            if matched is not None:
                message, hint = matched
                return ClassifiedDiagnostic(
                    message=message,
                    line_number=line_number,
                    source_line=source_line,
                    hint=hint,
                )
        return None

    return None


def format_diagnostic(diagnostic: ClassifiedDiagnostic) -> str:
    parts = ["Compilation error"]
    if diagnostic.line_number is not None:
        parts.append(f"Line {diagnostic.line_number}\n{diagnostic.message}")
    else:
        parts.append(diagnostic.message)
    if diagnostic.source_line is not None:
        parts.append(f"Code:\n{diagnostic.source_line.rstrip()}")
    if diagnostic.hint:
        parts.append(f"Hint:\n{diagnostic.hint}")
    return "\n\n".join(parts)
