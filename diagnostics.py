import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence


class Severity(IntEnum):
    INFO = 0
    WARNING = 1
    ERROR = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    summary: str
    location: Optional[str] = None

    @property
    def code(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        text = f"[{self.severity.label}] {self.code}: {self.summary}"
        if self.location:
            text += f" ({self.location})"
        return text


class ClangDiagnostic(Diagnostic):
    """A message forwarded from the clang front end."""


class UnresolvedTypeReference(Diagnostic):
    def __init__(self, type_spelling: str, declaration: str, location: Optional[str] = None):
        super().__init__(
            Severity.ERROR,
            f"The type '{type_spelling}' used by '{declaration}' could not be resolved; the declaration was skipped.",
            location,
        )


class IgnoredTypeUsed(Diagnostic):
    def __init__(self, type_name: str, reason: str, location: Optional[str] = None):
        super().__init__(
            Severity.WARNING,
            f"The type '{type_name}' {reason}, but is used in the abstract syntax tree.",
            location,
        )


class UnmappableConstruct(Diagnostic):
    def __init__(self, name: str, reason: str, location: Optional[str] = None):
        super().__init__(Severity.WARNING, f"'{name}': {reason}", location)


class MacroNotConstant(Diagnostic):
    def __init__(self, name: str, reason: str, location: Optional[str] = None):
        super().__init__(Severity.INFO, f"Macro '{name}' was excluded: {reason}", location)


class BitnessMismatch(Diagnostic):
    def __init__(self, extracted: int, requested: int):
        super().__init__(
            Severity.WARNING,
            f"The abstract syntax tree was extracted for {extracted}-bit but is mapped for {requested}-bit; "
            f"platform dependent integers follow the {requested}-bit table.",
        )


class NameCollision(Diagnostic):
    def __init__(self, tag: str, renamed: str, location: Optional[str] = None):
        super().__init__(
            Severity.WARNING,
            f"The tag '{tag}' shares its name with another declaration and is emitted as '{renamed}'.",
            location,
        )


class DanglingTypeReference(Diagnostic):
    def __init__(self, type_name: str, declaration: str, location: Optional[str] = None):
        super().__init__(
            Severity.ERROR,
            f"'{declaration}' references the type '{type_name}' which is not in the abstract syntax tree.",
            location,
        )


class DiagnosticsSink:
    """Append-only store shared by every stage of a single run.

    Appends are serialized with a lock so independent extractions may report
    from worker threads. Reads return snapshots.
    """

    def __init__(self):
        self._diagnostics: List[Diagnostic] = []
        self._lock = threading.Lock()

    def add(self, diagnostic: Diagnostic) -> Diagnostic:
        with self._lock:
            self._diagnostics.append(diagnostic)
        return diagnostic

    def extend(self, diagnostics: Sequence[Diagnostic]):
        with self._lock:
            self._diagnostics.extend(diagnostics)

    def all(self) -> List[Diagnostic]:
        with self._lock:
            return list(self._diagnostics)

    def at_least(self, severity: Severity) -> List[Diagnostic]:
        return [d for d in self.all() if d.severity >= severity]

    @property
    def has_errors(self) -> bool:
        return bool(self.at_least(Severity.ERROR))

    def __len__(self) -> int:
        with self._lock:
            return len(self._diagnostics)

    def report(self) -> str:
        return "\n".join(str(d) for d in self.all())


# --- Fatal errors ---

class BindgenError(Exception):
    """Base class for errors that abort the whole run."""


class ValidationError(BindgenError):
    pass


class ParseError(BindgenError):
    pass


class CompilationDiagnosticError(BindgenError):
    def __init__(self, messages: Sequence[str]):
        self.messages = list(messages)
        super().__init__("Clang parsing errors:\n\t" + "\n\t".join(self.messages))


class UnresolvedTypeError(BindgenError):
    def __init__(self, diagnostic: Diagnostic):
        self.diagnostic = diagnostic
        super().__init__(diagnostic.summary)
