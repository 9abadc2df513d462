import os
import re
from typing import Callable, Dict, List, Optional, Set, Tuple

from clang.cindex import Cursor, CursorKind, StorageClass, Type, TypeKind

from c_ast import (CAbstractSyntaxTree, CArray, CEnum, CEnumValue, CFunction, CFunctionParameter,
                   CFunctionPointer, CLocation, CNode, COpaqueType, CPointer, CPrimitive, CRecord,
                   CRecordField, CTypedef, CVariable)
from clang_parser import ParsedHeader
from config import IgnoreRules
from diagnostics import (DiagnosticsSink, IgnoredTypeUsed, MacroNotConstant, NameCollision, UnmappableConstruct,
                         UnresolvedTypeError, UnresolvedTypeReference)
from macro_processor import MacroCandidate, MacroProcessor

PRIMITIVE_KINDS = {
    TypeKind.VOID, TypeKind.BOOL,
    TypeKind.CHAR_U, TypeKind.UCHAR, TypeKind.CHAR16, TypeKind.CHAR32,
    TypeKind.USHORT, TypeKind.UINT, TypeKind.ULONG, TypeKind.ULONGLONG, TypeKind.UINT128,
    TypeKind.CHAR_S, TypeKind.SCHAR, TypeKind.WCHAR,
    TypeKind.SHORT, TypeKind.INT, TypeKind.LONG, TypeKind.LONGLONG, TypeKind.INT128,
    TypeKind.FLOAT, TypeKind.DOUBLE, TypeKind.LONGDOUBLE,
}

# Typedefs recorded as primitives so their width can be resolved per bitness
PLATFORM_TYPEDEFS = {
    "size_t", "ssize_t", "ptrdiff_t", "intptr_t", "uintptr_t", "wchar_t",
    "int8_t", "uint8_t", "int16_t", "uint16_t", "int32_t", "uint32_t", "int64_t", "uint64_t",
}

_QUALIFIERS = re.compile(r"\b(const|volatile|restrict|__restrict)\b")
_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$")
_RECORD_KINDS = (CursorKind.STRUCT_DECL, CursorKind.UNION_DECL)
_TAG_PREFIXES = {CursorKind.STRUCT_DECL: "struct", CursorKind.UNION_DECL: "union", CursorKind.ENUM_DECL: "enum"}
_ORDINARY_KINDS = (CursorKind.FUNCTION_DECL, CursorKind.VAR_DECL, CursorKind.TYPEDEF_DECL, CursorKind.MACRO_DEFINITION)


class _UnresolvedType(Exception):
    def __init__(self, spelling: str):
        super().__init__(spelling)
        self.spelling = spelling


def _clean_spelling(spelling: str) -> str:
    return " ".join(_QUALIFIERS.sub("", spelling).split())


def _pascal(type_name: str) -> str:
    text = type_name.replace("*", " Ptr ")
    text = re.sub(r"\[(\d+)\]", r" Array\1 ", text)
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^\w]+", text) if part)


def _join_tokens(spellings: List[str]) -> str:
    out = ""
    for text in spellings:
        if out and (out[-1].isalnum() or out[-1] == "_") and (text[0].isalnum() or text[0] in "_'\""):
            out += " "
        out += text
    return out


def _decl_key(cursor: Cursor) -> Tuple[str, int, int]:
    location = cursor.location
    return (location.file.name if location.file else "", location.line, location.column)


def _tag_declaration(t: Type) -> Optional[Cursor]:
    while t.kind == TypeKind.ELABORATED:
        t = t.get_named_type()
    if t.kind in (TypeKind.RECORD, TypeKind.ENUM):
        decl = t.get_declaration()
        return decl.get_definition() or decl
    return None


class CExtractor:
    """
    Walks a libclang translation unit and builds the normalized C abstract
    syntax tree. Every type is registered once under its canonical name, in the
    order it is first reached from the top-level declarations.
    """

    def __init__(self, diagnostics: DiagnosticsSink, ignore_rules: IgnoreRules = IgnoreRules(),
                 strict: bool = False, verbose: bool = False):
        self.diagnostics = diagnostics
        self.ignore_rules = ignore_rules
        self.strict = strict
        self.verbose = verbose

    def _debug(self, message: str):
        if self.verbose:
            print(f"DEBUG: {message}")

    def _reset(self, parsed: ParsedHeader):
        self._parsed = parsed
        self._bitness = parsed.bitness
        self._base_dir = os.path.dirname(parsed.header_path)
        self._order: List[str] = []
        self._reserved: Set[str] = set()
        self._nodes: Dict[str, CNode] = {}
        self._decl_names: Dict[Tuple[str, int, int], str] = {}
        self._warned_ignored: Set[str] = set()
        self._macros: Dict[str, MacroCandidate] = {}
        self._redefined: Set[str] = set()
        self._ordinary_names: Set[str] = set()
        self._tag_renames: Dict[Tuple[str, str], str] = {}

    def extract(self, parsed: ParsedHeader) -> CAbstractSyntaxTree:
        self._reset(parsed)
        root = parsed.translation_unit.cursor
        children = list(root.get_children())
        self._collect_ordinary_names(children)
        self._name_typedef_anonymous_tags(children)
        for cursor in children:
            self._visit(cursor)

        self._resolve_macros()
        nodes = tuple(self._nodes[name] for name in self._order if name in self._nodes)
        return CAbstractSyntaxTree(file_name=self._relative(parsed.header_path),
                                   bitness=self._bitness, nodes=nodes)

    # --- Bookkeeping ---

    def _relative(self, path: str) -> str:
        relative = os.path.relpath(os.path.abspath(path), self._base_dir)
        if relative.startswith(".."):
            relative = os.path.abspath(path)
        return relative.replace("\\", "/")

    def _location(self, cursor: Cursor) -> Optional[CLocation]:
        location = cursor.location
        if not location.file:
            return None
        return CLocation(self._relative(location.file.name), location.line)

    def _reserve(self, name: str):
        if name not in self._reserved:
            self._reserved.add(name)
            self._order.append(name)

    def _add(self, node: CNode):
        self._reserve(node.name)
        self._nodes[node.name] = node

    def _is_ignored(self, cursor: Cursor) -> bool:
        location = cursor.location
        return bool(location.file) and self.ignore_rules.is_ignored(location.file.name, self._base_dir)

    def _check_ignored(self, cursor: Cursor, name: str):
        if name in self._warned_ignored or not self._is_ignored(cursor):
            return
        self._warned_ignored.add(name)
        path = self._relative(cursor.location.file.name)
        self.diagnostics.add(IgnoredTypeUsed(name, f"belongs to the ignored file '{path}'",
                                             str(self._location(cursor))))

    def _collect_ordinary_names(self, children: List[Cursor]):
        # Tags live in their own C namespace, every other top-level name shares one
        for cursor in children:
            if cursor.kind not in _ORDINARY_KINDS or not cursor.location.file:
                continue
            if cursor.kind == CursorKind.TYPEDEF_DECL:
                tag = _tag_declaration(cursor.underlying_typedef_type)
                if tag is not None and tag.spelling == cursor.spelling:
                    # typedef struct X X;
                    continue
            self._ordinary_names.add(cursor.spelling)

    def _name_typedef_anonymous_tags(self, children: List[Cursor]):
        # typedef struct { ... } Name;  names the record itself
        for cursor in children:
            if cursor.kind != CursorKind.TYPEDEF_DECL:
                continue
            decl = _tag_declaration(cursor.underlying_typedef_type)
            if decl is not None and self._is_anonymous(decl):
                self._decl_names.setdefault(_decl_key(decl), cursor.spelling)

    @staticmethod
    def _is_anonymous(decl: Cursor) -> bool:
        spelling = decl.spelling
        return decl.is_anonymous() or not spelling or not _IDENTIFIER.match(spelling)

    def _tag_name(self, decl: Cursor) -> str:
        key = _decl_key(decl)
        if key in self._decl_names:
            return self._decl_names[key]
        if not self._is_anonymous(decl):
            return self._named_tag(decl)
        prefix = {CursorKind.UNION_DECL: "Union", CursorKind.ENUM_DECL: "Enum"}.get(decl.kind, "Struct")
        name = f"Anonymous_{prefix}_{decl.location.line}_{decl.location.column}"
        self._decl_names[key] = name
        return name

    def _named_tag(self, decl: Cursor) -> str:
        """`struct stat` next to a function `stat()` becomes `struct_stat`."""
        name = decl.spelling
        if name not in self._ordinary_names:
            return name
        key = (_TAG_PREFIXES.get(decl.kind, "struct"), name)
        if key not in self._tag_renames:
            renamed = f"{key[0]}_{name}"
            while renamed in self._ordinary_names:
                renamed += "_"
            self._tag_renames[key] = renamed
            self.diagnostics.add(NameCollision(f"{key[0]} {name}", renamed, str(self._location(decl))))
        return self._tag_renames[key]

    # --- Top-level declarations ---

    def _visit(self, cursor: Cursor):
        location = cursor.location
        if not location.file or location.is_in_system_header:
            return
        if self._is_ignored(cursor):
            self._debug(f"Skipping {cursor.kind.name} '{cursor.spelling}' from an ignored file")
            return

        kind = cursor.kind
        if kind == CursorKind.FUNCTION_DECL:
            self._declare(cursor, self._function)
        elif kind == CursorKind.VAR_DECL:
            self._declare(cursor, self._variable)
        elif kind in _RECORD_KINDS or kind == CursorKind.ENUM_DECL:
            # Anonymous tags are reached through the typedef or field that uses them
            if self._is_anonymous(cursor) and _decl_key(cursor) not in self._decl_names and kind in _RECORD_KINDS:
                return
            self._declare(cursor, lambda c: self.resolve(c.type))
        elif kind == CursorKind.TYPEDEF_DECL:
            self._declare(cursor, self._typedef)
        elif kind == CursorKind.MACRO_DEFINITION:
            self._macro(cursor)

    def _declare(self, cursor: Cursor, handler: Callable[[Cursor], object]):
        mark = len(self._order)
        try:
            handler(cursor)
        except _UnresolvedType as e:
            # Drop everything reserved on behalf of the failed declaration
            for name in self._order[mark:]:
                self._reserved.discard(name)
                self._nodes.pop(name, None)
            del self._order[mark:]
            diagnostic = self.diagnostics.add(
                UnresolvedTypeReference(e.spelling, cursor.spelling, str(self._location(cursor))))
            if self.strict:
                raise UnresolvedTypeError(diagnostic) from e

    def _taken(self, cursor: Cursor, node_type: type) -> bool:
        name = cursor.spelling
        if name not in self._reserved:
            return False
        if not isinstance(self._nodes.get(name), node_type):
            self.diagnostics.add(UnmappableConstruct(
                name, "the name is already used by another declaration; this one was skipped",
                str(self._location(cursor))))
        return True

    def _function(self, cursor: Cursor):
        name = cursor.spelling
        if self._taken(cursor, CFunction):
            return
        if cursor.storage_class == StorageClass.STATIC:
            self._debug(f"Skipping static function: {name}")
            return
        print(f"Found Function: {name}")
        return_type = self.resolve(cursor.result_type)
        parameters = tuple(CFunctionParameter(a.spelling, self.resolve(a.type)) for a in cursor.get_arguments())
        is_variadic = cursor.type.kind == TypeKind.FUNCTIONPROTO and cursor.type.is_function_variadic()
        self._add(CFunction(name=name, return_type=return_type, parameters=parameters,
                            is_variadic=is_variadic, location=self._location(cursor)))

    def _variable(self, cursor: Cursor):
        name = cursor.spelling
        if cursor.storage_class == StorageClass.STATIC or self._taken(cursor, CVariable):
            return
        print(f"Found Variable: {name}")
        self._add(CVariable(name=name, type=self.resolve(cursor.type), location=self._location(cursor)))

    def _typedef(self, cursor: Cursor) -> str:
        name = cursor.spelling
        underlying = cursor.underlying_typedef_type
        if name in PLATFORM_TYPEDEFS:
            return self._primitive(underlying.get_canonical(), name)
        if name in self._reserved:
            return name
        tag = _tag_declaration(underlying)
        if tag is not None and self._tag_name(tag) == name:
            # typedef struct Name Name;
            return self.resolve(underlying)
        self._check_ignored(cursor, name)
        self._reserve(name)
        underlying_name = self.resolve(underlying)
        print(f"Found Typedef: {name} -> {underlying_name}")
        self._add(CTypedef(name=name, underlying_type=underlying_name, location=self._location(cursor)))
        return name

    def _macro(self, cursor: Cursor):
        name = cursor.spelling
        # Skip internal/compiler macros
        if name.startswith("__"):
            return
        tokens = list(cursor.get_tokens())
        if not tokens:
            return
        body = tokens[1:]
        location = self._location(cursor)
        if body and body[0].spelling == "(" and body[0].extent.start.offset == tokens[0].extent.end.offset:
            self.diagnostics.add(MacroNotConstant(name, "function-like macros are not constants", str(location)))
            return
        replacement = _join_tokens([t.spelling for t in body])
        if not replacement:
            # Include guards and feature flags
            return
        previous = self._macros.get(name)
        if previous is not None:
            if previous.replacement != replacement:
                self._redefined.add(name)
            return
        self._macros[name] = MacroCandidate(name=name, replacement=replacement, location=location)
        self._reserve(name)

    def _resolve_macros(self):
        candidates = []
        for name, candidate in self._macros.items():
            if name in self._redefined:
                self.diagnostics.add(MacroNotConstant(
                    name, "the macro is conditionally defined with different values", str(candidate.location)))
            else:
                candidates.append(candidate)
        accepted = {}
        if candidates:
            processor = MacroProcessor(self._parsed, self, self.diagnostics, verbose=self.verbose)
            accepted = processor.process_macros(candidates)
        for name in self._macros:
            if name in accepted:
                self._nodes[name] = accepted[name]
            elif name not in self._nodes:
                self._reserved.discard(name)
                self._order.remove(name)

    # --- Types ---

    def resolve(self, t: Type) -> str:
        """Registers the canonical node(s) for a clang type and returns its name."""
        kind = t.kind
        if kind == TypeKind.ELABORATED:
            return self.resolve(t.get_named_type())
        if kind == TypeKind.TYPEDEF:
            return self._typedef(t.get_declaration())
        if kind == TypeKind.POINTER:
            return self._pointer(t)
        if kind in (TypeKind.CONSTANTARRAY, TypeKind.INCOMPLETEARRAY):
            return self._array(t)
        if kind == TypeKind.RECORD:
            return self._record(t)
        if kind == TypeKind.ENUM:
            return self._enum(t)
        if kind in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            return self._function_pointer(t)
        if kind in PRIMITIVE_KINDS:
            return self._primitive(t)
        canonical = t.get_canonical()
        if canonical.kind not in (kind, TypeKind.INVALID, TypeKind.UNEXPOSED):
            return self.resolve(canonical)
        raise _UnresolvedType(t.spelling or kind.name)

    def resolve_type(self, t: Type) -> Optional[str]:
        try:
            return self.resolve(t)
        except _UnresolvedType:
            return None

    def string_type(self) -> str:
        if "char" not in self._nodes:
            self._add(CPrimitive(name="char", size_of=1, align_of=1))
        if "char*" not in self._nodes:
            self._add(CPointer(name="char*", pointee_type="char", size_of=self._bitness // 8))
        return "char*"

    def _primitive(self, t: Type, name: Optional[str] = None) -> str:
        name = name or _clean_spelling(t.get_canonical().spelling)
        if name not in self._nodes:
            self._add(CPrimitive(name=name, size_of=max(t.get_size(), 0), align_of=max(t.get_align(), 0)))
        return name

    def _pointer(self, t: Type) -> str:
        pointee = t.get_pointee()
        canonical = pointee.get_canonical()
        if canonical.kind in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            return self._function_pointer(canonical)
        pointee_name = self.resolve(pointee)
        name = f"{pointee_name}*"
        if name not in self._nodes:
            self._add(CPointer(name=name, pointee_type=pointee_name, size_of=self._bitness // 8))
        return name

    def _array(self, t: Type) -> str:
        element_name = self.resolve(t.get_array_element_type())
        count = t.get_array_size() if t.kind == TypeKind.CONSTANTARRAY else 0
        name = f"{element_name}[{count}]"
        if name not in self._nodes:
            self._add(CArray(name=name, element_type=element_name, element_count=count,
                             size_of=max(t.get_size(), 0)))
        return name

    def _function_pointer(self, t: Type) -> str:
        return_type = self.resolve(t.get_result())
        parameter_types = [self.resolve(a) for a in t.argument_types()] if t.kind == TypeKind.FUNCTIONPROTO else []
        name = "FnPtr_" + "_".join(_pascal(n) for n in [return_type] + parameter_types)
        if name not in self._nodes:
            self._add(CFunctionPointer(
                name=name, return_type=return_type,
                parameters=tuple(CFunctionParameter("", p) for p in parameter_types),
                size_of=self._bitness // 8))
        return name

    def _record(self, t: Type) -> str:
        decl = t.get_declaration()
        definition = decl.get_definition()
        cursor = definition or decl
        name = self._tag_name(cursor)
        if name in self._reserved:
            return name
        self._check_ignored(cursor, name)
        if definition is None:
            print(f"Found Opaque Type: {name}")
            self._add(COpaqueType(name=name, location=self._location(cursor)))
            return name

        is_union = cursor.kind == CursorKind.UNION_DECL
        print(f"Found {'Union' if is_union else 'Struct'}: {name}")
        self._reserve(name)
        record_type = definition.type
        fields = self._fields(record_type, name, 0)
        self._add(CRecord(name=name, is_union=is_union, fields=tuple(fields),
                          size_of=max(record_type.get_size(), 0), align_of=max(record_type.get_align(), 0),
                          location=self._location(cursor)))
        return name

    def _fields(self, record_type: Type, record_name: str, base_offset: int) -> List[CRecordField]:
        fields: List[CRecordField] = []
        for field_cursor in record_type.get_fields():
            offset = base_offset + field_cursor.get_field_offsetof() // 8
            if not _IDENTIFIER.match(field_cursor.spelling or ""):
                # Anonymous member: its fields are accessed as if they were ours
                fields.extend(self._fields(field_cursor.type.get_canonical(), record_name, offset))
                continue
            tag = _tag_declaration(field_cursor.type)
            if tag is not None and self._is_anonymous(tag) and _decl_key(tag) not in self._decl_names:
                prefix = {CursorKind.UNION_DECL: "Union", CursorKind.ENUM_DECL: "Enum"}.get(tag.kind, "Struct")
                self._decl_names[_decl_key(tag)] = f"{record_name}_{field_cursor.spelling}_{prefix}"
            if field_cursor.is_bitfield():
                self.diagnostics.add(UnmappableConstruct(
                    f"{record_name}.{field_cursor.spelling}",
                    f"bit-field of width {field_cursor.get_bitfield_width()} is exposed as its storage unit",
                    str(self._location(field_cursor))))
            type_name = self.resolve(field_cursor.type)
            fields.append(CRecordField(name=field_cursor.spelling, type=type_name, offset=offset,
                                       size_of=max(field_cursor.type.get_size(), 0)))
        return fields

    def _enum(self, t: Type) -> str:
        decl = t.get_declaration()
        cursor = decl.get_definition() or decl
        name = self._tag_name(cursor)
        if name in self._reserved:
            return name
        self._check_ignored(cursor, name)
        print(f"Found Enum: {name}")
        self._reserve(name)
        integer_type = self.resolve(cursor.enum_type)
        values = tuple(
            CEnumValue(name=c.spelling, value=c.enum_value, location=self._location(c))
            for c in cursor.get_children() if c.kind == CursorKind.ENUM_CONSTANT_DECL
        )
        self._add(CEnum(name=name, integer_type=integer_type, values=values, location=self._location(cursor)))
        return name
