"""Tests for the compiler diagnostic classifier."""

from cpprunner.diagnostics import RULES, classify, format_diagnostic
from cpprunner.models import ClassifiedDiagnostic


def _classify_line(line, source="int main(){}"):
    return classify(f"main.cpp: In function 'int main()':\n{line}\n", source.split("\n"))


class TestRules:
    """Each known g++ complaint maps to its explanation."""

    def test_missing_semicolon(self):
        source = "int main(){int x=1 int y=2;}"
        diag = _classify_line("main.cpp:1:20: error: expected ',' or ';' before 'int'", source)
        assert diag is not None
        assert diag.message == "Missing a semicolon (;)."
        assert diag.line_number == 1
        assert diag.source_line == source
        assert diag.hint.endswith(";")

    def test_plain_expected_semicolon(self):
        diag = _classify_line("main.cpp:1:5: error: expected ';' before '}' token")
        assert diag.message == "Missing a semicolon (;)."

    def test_unclosed_brace(self):
        diag = _classify_line("main.cpp:1:13: error: expected '}' at end of input")
        assert diag.message == "Missing a closing brace }."
        assert diag.hint == "Every { needs a matching }."

    def test_unclosed_parenthesis(self):
        diag = _classify_line("main.cpp:1:14: error: expected ')' before ';' token")
        assert diag.message == "Missing a closing parenthesis )."

    def test_unterminated_string(self):
        diag = _classify_line('main.cpp:1:20: error: missing terminating " character')
        assert diag.message == "Unterminated string."

    def test_incomplete_expression_wins_over_parenthesis(self):
        diag = _classify_line("main.cpp:1:18: error: expected primary-expression before ')' token")
        assert diag.message == "Incomplete expression."

    def test_extra_closing_brace_wins_over_unclosed_brace(self):
        diag = _classify_line("main.cpp:1:1: error: expected declaration before '}' token")
        assert diag.message == "Extra closing brace }."

    def test_undeclared_identifier(self):
        diag = _classify_line("main.cpp:1:12: error: 'total' was not declared in this scope")
        assert diag.message == "Identifier 'total' is not declared."
        assert "Declare it" in diag.hint

    def test_undeclared_std_identifier_suggests_include(self):
        diag = _classify_line("main.cpp:1:12: error: 'cout' was not declared in this scope")
        assert "standard library" in diag.message
        assert "#include <iostream>" in diag.hint
        assert "using namespace std;" in diag.hint

    def test_not_a_member_of_std(self):
        diag = _classify_line("main.cpp:1:17: error: 'vector' is not a member of 'std'")
        assert "#include <vector>" in diag.hint

    def test_typographic_quotes(self):
        diag = _classify_line("main.cpp:1:12: error: ‘cin’ was not declared in this scope")
        assert "#include <iostream>" in diag.hint


class TestClassify:
    """Test classifier scanning and fallbacks."""

    def test_unknown_error_is_not_classified(self):
        assert _classify_line("main.cpp:1:1: error: 'foo' does not name a type") is None

    def test_fatal_missing_header_is_not_classified(self):
        assert _classify_line("main.cpp:1:10: fatal error: vectr: No such file or directory") is None

    def test_no_error_lines(self):
        assert classify("main.cpp:1:5: warning: unused variable 'x'\n", ["int x;"]) is None
        assert classify("", []) is None

    def test_only_first_error_line_is_considered(self):
        stderr = (
            "main.cpp:1:1: error: 'foo' does not name a type\n"
            "main.cpp:2:5: error: expected ';' before '}' token\n"
        )
        assert classify(stderr, ["foo x;", "int y"]) is None

    def test_first_error_wins(self):
        stderr = (
            "main.cpp:2:5: error: expected ';' before '}' token\n"
            "main.cpp:3:1: error: expected '}' at end of input\n"
        )
        diag = classify(stderr, ["int main(){", "  int y", "", ""])
        assert diag.message == "Missing a semicolon (;)."
        assert diag.line_number == 2
        assert diag.source_line == "  int y"

    def test_line_out_of_range(self):
        diag = classify("main.cpp:10:1: error: expected '}' at end of input", ["int main(){"])
        assert diag.line_number == 10
        assert diag.source_line is None

    def test_missing_location(self):
        diag = classify("cc1plus: error: expected ';' before '}' token", ["x"])
        assert diag.line_number is None
        assert diag.source_line is None

    def test_error_inside_header_does_not_quote_source(self):
        stderr = (
            "In file included from main.cpp:1:\n"
            "/usr/include/c++/13/bits/stl_vector.h:408:20: error: expected ';' before '}' token\n"
        )
        diag = classify(stderr, ["#include <vector>"] * 500)
        assert diag.message == "Missing a semicolon (;)."
        assert diag.line_number is None
        assert diag.source_line is None
        assert "Code:" not in format_diagnostic(diag)

    def test_deterministic(self):
        stderr = "main.cpp:1:12: error: 'cout' was not declared in this scope"
        assert classify(stderr, ["x"]) == classify(stderr, ["x"])

    def test_rule_names_unique(self):
        names = [rule.name for rule in RULES]
        assert len(names) == len(set(names))


class TestFormatDiagnostic:
    """Test rendering of classified diagnostics."""

    def test_full_block(self):
        text = format_diagnostic(
            ClassifiedDiagnostic(
                message="Missing a semicolon (;).",
                line_number=3,
                source_line="  int x = 1  ",
                hint="In C++ almost every statement ends with ;",
            )
        )
        assert text == (
            "Compilation error\n\n"
            "Line 3\nMissing a semicolon (;).\n\n"
            "Code:\n  int x = 1\n\n"
            "Hint:\nIn C++ almost every statement ends with ;"
        )

    def test_without_location(self):
        text = format_diagnostic(ClassifiedDiagnostic(message="Unterminated string."))
        assert text == "Compilation error\n\nUnterminated string."
