import threading

from diagnostics import (CompilationDiagnosticError, DanglingTypeReference, Diagnostic, IgnoredTypeUsed,
                         MacroNotConstant, NameCollision, Severity, UnresolvedTypeError, UnresolvedTypeReference)


def test_severity_filter(diagnostics):
    diagnostics.add(MacroNotConstant("FOO", "the replacement calls a function or macro"))
    diagnostics.add(IgnoredTypeUsed("Bar", "is in the ignored type names"))

    assert len(diagnostics) == 2
    assert [d.code for d in diagnostics.at_least(Severity.WARNING)] == ["IgnoredTypeUsed"]
    assert [d.code for d in diagnostics.at_least(Severity.INFO)] == ["MacroNotConstant", "IgnoredTypeUsed"]
    assert not diagnostics.has_errors

    diagnostics.add(DanglingTypeReference("Baz", "frob"))
    assert diagnostics.has_errors
    assert len(diagnostics.all()) == 3


def test_diagnostic_text():
    diagnostic = UnresolvedTypeReference("foo", "bar", "a.h:3")
    assert diagnostic.severity == Severity.ERROR
    assert str(diagnostic) == (
        "[Error] UnresolvedTypeReference: The type 'foo' used by 'bar' could not be resolved; "
        "the declaration was skipped. (a.h:3)"
    )


def test_diagnostic_without_location():
    diagnostic = Diagnostic(Severity.INFO, "hello")
    assert str(diagnostic) == "[Info] Diagnostic: hello"


def test_all_returns_a_snapshot(diagnostics):
    snapshot = diagnostics.all()
    diagnostics.add(Diagnostic(Severity.INFO, "late"))
    assert snapshot == []


def test_concurrent_appends(diagnostics):
    def append():
        for i in range(200):
            diagnostics.add(Diagnostic(Severity.WARNING, f"message {i}"))

    threads = [threading.Thread(target=append) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(diagnostics) == 1600


def test_fatal_errors():
    error = CompilationDiagnosticError(["a.h:1:1: error: expected ';'"])
    assert error.messages == ["a.h:1:1: error: expected ';'"]
    assert "expected ';'" in str(error)

    diagnostic = UnresolvedTypeReference("foo", "bar")
    assert UnresolvedTypeError(diagnostic).diagnostic is diagnostic


def test_name_collision_is_a_warning():
    diagnostic = NameCollision("struct stat", "struct_stat", "a.h:1")
    assert diagnostic.severity == Severity.WARNING
    assert diagnostic.code == "NameCollision"
    assert "'struct stat'" in diagnostic.summary
    assert str(diagnostic).endswith("emitted as 'struct_stat'. (a.h:1)")
