from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from clang.cindex import CursorKind, Type, TypeKind

from c_ast import CLocation, CMacroDefinition
from clang_parser import ParsedHeader, parse_typing_unit
from diagnostics import DiagnosticsSink, MacroNotConstant
from expr_ast import check_constant, identifiers, parse_macro_replacement

TYPING_FILE_NAME = "__sharpbindgen_macros.c"
TYPING_PREFIX = "__sharpbindgen_"

_CHAR_KINDS = (TypeKind.CHAR_S, TypeKind.SCHAR, TypeKind.CHAR_U, TypeKind.UCHAR)


class TypeRegistry(Protocol):
    def resolve_type(self, clang_type: Type) -> Optional[str]: ...
    def string_type(self) -> str: ...


@dataclass
class MacroCandidate:
    name: str
    replacement: str
    location: CLocation


class MacroProcessor:
    """Keeps the object-like macros that evaluate to a constant literal.

    The replacement text is screened with the expression parser, then every
    survivor is typed in one scratch unit compiled with the header's arguments:

        static const __typeof__(NAME) __sharpbindgen_NAME = NAME;
    """

    def __init__(self, parsed: ParsedHeader, types: TypeRegistry, diagnostics: DiagnosticsSink,
                 verbose: bool = False):
        self.parsed = parsed
        self.types = types
        self.diagnostics = diagnostics
        self.verbose = verbose

    def _exclude(self, candidate: MacroCandidate, reason: str):
        if self.verbose:
            print(f"DEBUG: Excluding macro {candidate.name}: {reason}")
        self.diagnostics.add(MacroNotConstant(candidate.name, reason, str(candidate.location)))

    def _typed_name(self, clang_type: Type) -> Optional[str]:
        canonical = clang_type.get_canonical()
        if canonical.kind in (TypeKind.CONSTANTARRAY, TypeKind.INCOMPLETEARRAY):
            if canonical.get_array_element_type().get_canonical().kind in _CHAR_KINDS:
                return self.types.string_type()
            return None
        if canonical.kind in (TypeKind.POINTER, TypeKind.RECORD, TypeKind.INVALID,
                              TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            return None
        return self.types.resolve_type(canonical)

    def process_macros(self, candidates: List[MacroCandidate]) -> Dict[str, CMacroDefinition]:
        """Returns the accepted macros by name; every rejection is reported as a diagnostic."""
        screened: List[MacroCandidate] = []
        known: List[str] = []
        for candidate in candidates:
            expr = parse_macro_replacement(candidate.replacement)
            ok, reason = check_constant(expr, known)
            if not ok:
                self._exclude(candidate, reason)
                continue
            screened.append(candidate)
            known.append(candidate.name)
        if not screened:
            return {}

        header = self.parsed.header_path.replace("\\", "/")
        lines = [f'#include "{header}"']
        line_to_name: Dict[int, str] = {}
        for candidate in screened:
            lines.append(f"static const __typeof__({candidate.name}) {TYPING_PREFIX}{candidate.name} = {candidate.name};")
            line_to_name[len(lines)] = candidate.name
        code = "\n".join(lines) + "\n"
        if self.verbose:
            print(f"DEBUG: Generated macro typing unit:\n{code}")

        tu, errors = parse_typing_unit(self.parsed, TYPING_FILE_NAME, code)
        failed: Dict[str, str] = {}
        for line, message in errors:
            if line in line_to_name:
                failed.setdefault(line_to_name[line], message)

        typed: Dict[str, Type] = {}
        for cursor in tu.cursor.get_children():
            if cursor.kind == CursorKind.VAR_DECL and cursor.spelling.startswith(TYPING_PREFIX):
                typed[cursor.spelling[len(TYPING_PREFIX):]] = cursor.type

        accepted: Dict[str, CMacroDefinition] = {}
        for candidate in screened:
            if candidate.name in failed:
                self._exclude(candidate, f"the value does not compile ({failed[candidate.name]})")
                continue
            expr = parse_macro_replacement(candidate.replacement)
            missing = [n for n in identifiers(expr) if n not in accepted]
            if missing:
                self._exclude(candidate, f"the replacement references the excluded macro '{missing[0]}'")
                continue
            clang_type = typed.get(candidate.name)
            type_name = self._typed_name(clang_type) if clang_type is not None else None
            if type_name is None:
                self._exclude(candidate, "the value is not of a primitive or string type")
                continue
            accepted[candidate.name] = CMacroDefinition(
                name=candidate.name, type=type_name, value=candidate.replacement, location=candidate.location)
            if self.verbose:
                print(f"DEBUG: Added constant: {candidate.name} = {candidate.replacement} ({type_name})")
        return accepted
