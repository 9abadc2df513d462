import os
import platform
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from clang.cindex import Config, Diagnostic, Index, TranslationUnit, TranslationUnitLoadError

from diagnostics import (ClangDiagnostic, CompilationDiagnosticError, DiagnosticsSink,
                         ParseError, Severity, ValidationError)

if os.getenv("LIBCLANG_PATH"):
    Config.set_library_file(os.getenv("LIBCLANG_PATH"))

# Not every clang.cindex release names these flags.
PARSE_INCLUDE_ATTRIBUTED_TYPES = 0x1000
PARSE_IGNORE_NON_ERRORS_FROM_INCLUDED_FILES = 0x4000

PARSE_OPTIONS = (TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD |
                 TranslationUnit.PARSE_SKIP_FUNCTION_BODIES |
                 PARSE_INCLUDE_ATTRIBUTED_TYPES |
                 PARSE_IGNORE_NON_ERRORS_FROM_INCLUDED_FILES)

_SEVERITIES = {
    Diagnostic.Ignored: Severity.INFO,
    Diagnostic.Note: Severity.INFO,
    Diagnostic.Warning: Severity.WARNING,
    Diagnostic.Error: Severity.ERROR,
    Diagnostic.Fatal: Severity.ERROR,
}


@dataclass
class ParsedHeader:
    """A native translation unit plus what is needed to parse companion sources the same way."""
    header_path: str
    clang_args: List[str]
    bitness: int
    translation_unit: TranslationUnit


def target_triple(bitness: int, system: Optional[str] = None) -> str:
    arch = "x86_64" if bitness == 64 else "i686"
    system = system or platform.system()
    if system == "Darwin":
        return f"{arch}-apple-darwin"
    if system == "Windows":
        return f"{arch}-pc-windows-msvc"
    return f"{arch}-unknown-linux-gnu"


def build_clang_args(bitness: int, include_dirs: Sequence[str] = (), defines: Sequence[str] = (),
                     extra_args: Sequence[str] = ()) -> List[str]:
    if bitness not in (32, 64):
        raise ValidationError(f"Bitness must be 32 or 64, got {bitness}.")
    args = ["-x", "c"]
    args.extend(f"-I{d}" for d in include_dirs)
    args.extend(f"-D{d}" for d in defines)
    args.extend(extra_args)
    if not any(a in ("-target", "--target") or a.startswith("--target=") for a in args):
        args.append(f"--target={target_triple(bitness)}")
    return args


def format_diagnostic(diag: Diagnostic) -> str:
    location = diag.location
    if location.file:
        return f"{location.file.name}:{location.line}:{location.column}: {diag.spelling}"
    return diag.spelling


def _parse(path: str, args: List[str], unsaved_files=None) -> TranslationUnit:
    index = Index.create()
    try:
        return index.parse(path, args=args, unsaved_files=unsaved_files, options=PARSE_OPTIONS)
    except TranslationUnitLoadError as e:
        raise ParseError(f"libclang failed to parse '{path}': {e}") from e


def parse_header(header_path: str, clang_args: List[str], bitness: int,
                 diagnostics: DiagnosticsSink) -> ParsedHeader:
    """Parses a header; error diagnostics after a successful parse are fatal too."""
    if not os.path.isfile(header_path):
        raise ValidationError(f"File does not exist: `{header_path}`.")
    header_path = os.path.abspath(header_path)

    print(f"libclang: Parsing '{header_path}' with the following arguments...")
    print(f"\t{' '.join(clang_args)}")
    tu = _parse(header_path, clang_args)

    errors = []
    if tu.diagnostics:
        print("Clang diagnostics:", file=sys.stderr)
    for diag in tu.diagnostics:
        message = format_diagnostic(diag)
        print(f"\t{message}", file=sys.stderr)
        severity = _SEVERITIES.get(diag.severity, Severity.INFO)
        diagnostics.add(ClangDiagnostic(severity, message))
        if diag.severity >= Diagnostic.Error:
            errors.append(message)
    if errors:
        raise CompilationDiagnosticError(errors)

    return ParsedHeader(header_path=header_path, clang_args=list(clang_args),
                        bitness=bitness, translation_unit=tu)


def parse_typing_unit(parsed: ParsedHeader, file_name: str, source: str) -> Tuple[TranslationUnit, List[Tuple[int, str]]]:
    """Parses an in-memory source next to the header with the header's arguments.

    Returns the unit and its (line, message) errors located in the scratch unit itself;
    such errors are expected and never reach the sink.
    """
    path = os.path.join(os.path.dirname(parsed.header_path), file_name)
    tu = _parse(path, parsed.clang_args, unsaved_files=[(path, source)])
    errors = []
    for diag in tu.diagnostics:
        if diag.severity < Diagnostic.Error:
            continue
        location = diag.location
        line = location.line if location.file and location.file.name == path else 0
        errors.append((line, diag.spelling))
    return tu, errors
