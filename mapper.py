import re
from typing import Dict, List, Optional, Set, Tuple, assert_never

from num2words import num2words

from c_ast import (CAbstractSyntaxTree, CArray, CEnum, CEnumValue, CFunction, CFunctionParameter,
                   CFunctionPointer, CMacroDefinition, CNode, COpaqueType, CPointer, CPrimitive, CRecord,
                   CTypedef, CVariable)
from config import MappingConfiguration
from diagnostics import (BitnessMismatch, DanglingTypeReference, DiagnosticsSink, IgnoredTypeUsed,
                         UnmappableConstruct)
from expr_ast import parse_macro_replacement, render_constant
from out_types import (CSharpAbstractSyntaxTree, CSharpAliasStruct, CSharpConstant, CSharpEnum,
                       CSharpEnumValue, CSharpFixedBuffer, CSharpFunction, CSharpFunctionPointer,
                       CSharpNode, CSharpOpaqueType, CSharpParameter, CSharpStruct, CSharpStructField,
                       CSharpType, CSharpVariable)

# C primitive name -> C# type, independent of the pointer width
PRIMITIVES: Dict[str, str] = {
    "void": "void",
    "bool": "byte",
    "_Bool": "byte",
    "char": "byte",
    "signed char": "sbyte",
    "unsigned char": "byte",
    "short": "short",
    "unsigned short": "ushort",
    "int": "int",
    "unsigned int": "uint",
    "long long": "long",
    "unsigned long long": "ulong",
    "__int128": "Int128",
    "unsigned __int128": "UInt128",
    "float": "float",
    "double": "double",
    "long double": "double",
    "int8_t": "sbyte",
    "uint8_t": "byte",
    "int16_t": "short",
    "uint16_t": "ushort",
    "int32_t": "int",
    "uint32_t": "uint",
    "int64_t": "long",
    "uint64_t": "ulong",
}

# Platform dependent integers: (C primitive name, bitness) -> C# type
PLATFORM_PRIMITIVES: Dict[Tuple[str, int], str] = {
    ("long", 32): "int", ("long", 64): "long",
    ("unsigned long", 32): "uint", ("unsigned long", 64): "ulong",
    ("size_t", 32): "uint", ("size_t", 64): "ulong",
    ("ssize_t", 32): "int", ("ssize_t", 64): "long",
    ("ptrdiff_t", 32): "int", ("ptrdiff_t", 64): "long",
    ("intptr_t", 32): "int", ("intptr_t", 64): "long",
    ("uintptr_t", 32): "uint", ("uintptr_t", 64): "ulong",
}

_BY_SIZE = {1: "byte", 2: "ushort", 4: "uint", 8: "ulong"}

# Element types C# accepts in a `fixed` buffer
FIXED_BUFFER_TYPES = {"bool", "byte", "sbyte", "char", "short", "ushort", "int", "uint",
                      "long", "ulong", "float", "double"}

CONSTANT_TYPES = FIXED_BUFFER_TYPES | {"string"}

# Narrowest first
_ENUM_BACKING = (
    ("byte", 0, 0xFF), ("sbyte", -0x80, 0x7F),
    ("ushort", 0, 0xFFFF), ("short", -0x8000, 0x7FFF),
    ("uint", 0, 0xFFFFFFFF), ("int", -0x80000000, 0x7FFFFFFF),
    ("ulong", 0, 0xFFFFFFFFFFFFFFFF), ("long", -0x8000000000000000, 0x7FFFFFFFFFFFFFFF),
)

_INTEGER_SIZES = {"byte": 1, "sbyte": 1, "ushort": 2, "short": 2, "uint": 4, "int": 4, "ulong": 8, "long": 8}
_SIZED_INTEGERS = {(4, True): "int", (4, False): "uint", (8, True): "long", (8, False): "ulong"}

_CALLING_CONVENTIONS = {"cdecl": "Cdecl", "stdcall": "StdCall", "fastcall": "FastCall", "thiscall": "ThisCall"}

CSHARP_KEYWORDS = {
    "abstract", "as", "base", "bool", "break", "byte", "case", "catch", "char", "checked", "class",
    "const", "continue", "decimal", "default", "delegate", "do", "double", "else", "enum", "event",
    "explicit", "extern", "false", "finally", "fixed", "float", "for", "foreach", "goto", "if",
    "implicit", "in", "int", "interface", "internal", "is", "lock", "long", "namespace", "new", "null",
    "object", "operator", "out", "override", "params", "private", "protected", "public", "readonly",
    "ref", "return", "sbyte", "sealed", "short", "sizeof", "stackalloc", "static", "string", "struct",
    "switch", "this", "throw", "true", "try", "typeof", "uint", "ulong", "unchecked", "unsafe",
    "ushort", "using", "virtual", "void", "volatile", "while",
}

VALUE = "value"
FIELD = "field"


def escape(name: str) -> str:
    return f"@{name}" if name in CSHARP_KEYWORDS else name


def narrowest_enum_type(values: List[int]) -> str:
    low = min(values, default=0)
    high = max(values, default=0)
    for type_name, minimum, maximum in _ENUM_BACKING:
        if minimum <= low and high <= maximum:
            return type_name
    return "long"


def _identifier_part(type_name: str) -> str:
    text = type_name.lstrip("@").replace("*", "Ptr")
    text = re.sub(r"\W+", "_", text)
    return text[:1].upper() + text[1:]


def fixed_buffer_name(element: str, count: int) -> str:
    words = re.sub(r"[^0-9A-Za-z]+", "_", num2words(count))
    return f"FixedBuffer_{_identifier_part(element)}_{words}"


class _DanglingReference(Exception):
    def __init__(self, type_name: str):
        super().__init__(type_name)
        self.type_name = type_name


class CSharpMapper:
    """Maps a C abstract syntax tree to C# declarations under a mapping configuration."""

    def __init__(self, config: MappingConfiguration, diagnostics: DiagnosticsSink, verbose: bool = False):
        self.config = config
        self.diagnostics = diagnostics
        self.verbose = verbose

    def _debug(self, message: str):
        if self.verbose:
            print(f"DEBUG: {message}")

    def map(self, ast: CAbstractSyntaxTree) -> CSharpAbstractSyntaxTree:
        self._ast = ast
        self._bitness = self.config.bitness or ast.bitness
        self._pointer_size = self._bitness // 8
        self._declarations: List[CSharpNode] = []
        self._fixed_buffers: Set[str] = set()
        self._warned: Set[str] = set()

        if self._bitness != ast.bitness:
            self.diagnostics.add(BitnessMismatch(ast.bitness, self._bitness))

        for node in ast.nodes:
            if isinstance(node, (CPrimitive, CPointer, CArray, CEnumValue)):
                # Structural types are spelled inline where they are used
                continue
            if node.name in self.config.ignored_type_names:
                if self.config.alias_for(node.name) is not None:
                    self.diagnostics.add(UnmappableConstruct(
                        node.name, "is both aliased and ignored; the ignore rule wins", str(node.location or "")))
                self._debug(f"Ignoring {node.kind.value}: {node.name}")
                continue
            if self.config.alias_for(node.name) is not None:
                self._debug(f"Aliasing {node.name} -> {self.config.alias_for(node.name)}")
                continue

            mark = len(self._declarations)
            try:
                declaration = self._declaration(node)
            except _DanglingReference as e:
                for helper in self._declarations[mark:]:
                    self._fixed_buffers.discard(helper.name)
                del self._declarations[mark:]
                self.diagnostics.add(DanglingTypeReference(e.type_name, node.name, str(node.location or "")))
                continue
            if declaration is not None:
                self._declarations.append(declaration)

        return CSharpAbstractSyntaxTree(class_name=self.config.class_name, bitness=self._bitness,
                                        declarations=tuple(self._declarations))

    # --- Declarations ---

    @staticmethod
    def _comment(node: CNode, kind: str) -> str:
        return f"{kind} @ {node.location}" if node.location else kind

    def _declaration(self, node: CNode) -> Optional[CSharpNode]:
        if isinstance(node, CFunction):
            return self._function(node)
        if isinstance(node, CFunctionPointer):
            return CSharpFunctionPointer(
                name=escape(node.name),
                return_type=self._map_type(node.return_type, VALUE),
                parameters=self._parameters(node.parameters),
                location_comment=self._comment(node, "FunctionPointer"),
                c_node=node,
            )
        if isinstance(node, CRecord):
            return self._record(node)
        if isinstance(node, CEnum):
            return self._enum(node)
        if isinstance(node, COpaqueType):
            return CSharpOpaqueType(name=escape(node.name), location_comment=self._comment(node, "OpaqueType"),
                                    c_node=node)
        if isinstance(node, CTypedef):
            underlying = self._map_type(node.underlying_type, FIELD)
            if underlying.name == "void":
                return None
            return CSharpAliasStruct(name=escape(node.name), underlying_type=underlying,
                                     location_comment=self._comment(node, "Typedef"), c_node=node)
        if isinstance(node, CVariable):
            target = self._node(node.type)
            type_name = node.type
            if isinstance(target, CArray):
                # A global array is exposed through a reference to its first element
                type_name = target.element_type
            return CSharpVariable(name=escape(node.name), c_name=node.name,
                                  type=self._map_type(type_name, VALUE),
                                  location_comment=self._comment(node, "Variable"), c_node=node)
        if isinstance(node, CMacroDefinition):
            return self._constant(node)
        if isinstance(node, (CPrimitive, CPointer, CArray, CEnumValue)):
            return None
        assert_never(node)

    def _parameters(self, parameters: Tuple[CFunctionParameter, ...]) -> Tuple[CSharpParameter, ...]:
        return tuple(
            CSharpParameter(name=escape(p.name or f"arg{i}"), type=self._map_type(p.type, VALUE))
            for i, p in enumerate(parameters)
        )

    def _function(self, node: CFunction) -> Optional[CSharpFunction]:
        if node.is_variadic:
            self.diagnostics.add(UnmappableConstruct(
                node.name, "variadic functions cannot be bound with a static signature", str(node.location or "")))
            return None
        return CSharpFunction(
            name=escape(node.name),
            return_type=self._map_type(node.return_type, VALUE),
            parameters=self._parameters(node.parameters),
            calling_convention=_CALLING_CONVENTIONS.get(node.calling_convention, "Cdecl"),
            location_comment=self._comment(node, "Function"),
            c_node=node,
        )

    def _record(self, node: CRecord) -> CSharpStruct:
        fields: List[CSharpStructField] = []
        offsets = sorted({f.offset for f in node.fields})
        for f in node.fields:
            if f.size_of == 0:
                self.diagnostics.add(UnmappableConstruct(
                    f"{node.name}.{f.name}", "zero sized field is covered by the struct size only",
                    str(node.location or "")))
                continue
            if node.is_union:
                end = node.size_of
            else:
                end = next((o for o in offsets if o > f.offset), node.size_of)
            fields.append(CSharpStructField(
                name=escape(f.name),
                type=self._map_type(f.type, FIELD),
                offset=f.offset,
                padding=max(0, end - (f.offset + f.size_of)),
            ))
        return CSharpStruct(name=escape(node.name), fields=tuple(fields), size_of=node.size_of,
                            align_of=node.align_of,
                            location_comment=self._comment(node, "Union" if node.is_union else "Struct"),
                            c_node=node)

    def _enum_backing(self, node: CEnum) -> CSharpType:
        if not node.values:
            return self._map_type(node.integer_type, VALUE)
        backing = narrowest_enum_type([v.value for v in node.values])
        size = _INTEGER_SIZES[backing]
        return CSharpType(backing, size, size)

    def _enum(self, node: CEnum) -> CSharpEnum:
        values = tuple(CSharpEnumValue(name=escape(v.name), value=v.value) for v in node.values)
        return CSharpEnum(name=escape(node.name), integer_type=self._enum_backing(node), values=values,
                          location_comment=self._comment(node, "Enum"), c_node=node)

    def _constant(self, node: CMacroDefinition) -> Optional[CSharpConstant]:
        target = self._node(node.type)
        if isinstance(target, CPointer) and node.type == "char*":
            type_name = "string"
        else:
            type_name = self._map_type(node.type, VALUE).name
        expr = parse_macro_replacement(node.value)
        if type_name not in CONSTANT_TYPES or expr is None:
            self.diagnostics.add(UnmappableConstruct(
                node.name, f"a constant of C type '{node.type}' has no C# constant form", str(node.location or "")))
            return None
        return CSharpConstant(name=escape(node.name), type=type_name, value=render_constant(expr, type_name),
                              location_comment=self._comment(node, "MacroDefinition"), c_node=node)

    # --- Types ---

    def _node(self, name: str) -> CNode:
        node = self._ast.node(name)
        if node is None:
            raise _DanglingReference(name)
        return node

    def _size_of(self, name: str, depth: int = 0) -> int:
        node = self._node(name)
        if isinstance(node, CTypedef) and depth < 64:
            return self._size_of(node.underlying_type, depth + 1)
        if isinstance(node, CEnum):
            return self._size_of(node.integer_type, depth + 1)
        return getattr(node, "size_of", 0)

    def _placeholder(self, name: str, context: str) -> CSharpType:
        if name not in self._warned:
            self._warned.add(name)
            self.diagnostics.add(IgnoredTypeUsed(name, "is in the ignored type names"))
        size = self._size_of(name)
        if context == FIELD and size > 0:
            return CSharpType("byte", size, 1, array_size=size)
        return CSharpType("IntPtr", self._pointer_size, self._pointer_size)

    def _platform_integer(self, node: CPrimitive) -> Optional[str]:
        name = PLATFORM_PRIMITIVES.get((node.name, self._bitness))
        if name is None or self._bitness != self._ast.bitness or node.size_of not in (4, 8):
            return name
        # Measured for this very target, so an LLP64 `long` stays 4 bytes
        return _SIZED_INTEGERS[(node.size_of, not name.startswith("u"))]

    def _primitive(self, node: CPrimitive) -> CSharpType:
        name = self._platform_integer(node) or PRIMITIVES.get(node.name)
        if name is None and node.name == "wchar_t":
            name = "char" if node.size_of == 2 else "uint"
        if name is None:
            name = _BY_SIZE.get(node.size_of, "IntPtr")
            if node.name not in self._warned:
                self._warned.add(node.name)
                self.diagnostics.add(UnmappableConstruct(
                    node.name, f"unknown primitive is mapped by its size to '{name}'"))
        elif node.name == "long double" and node.name not in self._warned:
            self._warned.add(node.name)
            self.diagnostics.add(UnmappableConstruct(node.name, "is narrowed to 'double'"))
        if (node.name, self._bitness) in PLATFORM_PRIMITIVES:
            size = _INTEGER_SIZES[name]
            return CSharpType(name, size, size)
        return CSharpType(name, node.size_of, node.align_of or node.size_of)

    def _map_type(self, name: str, context: str) -> CSharpType:
        node = self._node(name)
        if isinstance(node, (CPrimitive, CPointer, CArray)):
            return self._structural(node, context)
        if name in self.config.ignored_type_names:
            return self._placeholder(name, context)
        alias = self.config.alias_for(name)
        if alias is not None:
            return CSharpType(alias, self._size_of(name))
        if isinstance(node, CTypedef):
            underlying = self._map_type(node.underlying_type, context)
            if underlying.name == "void":
                return underlying
            return CSharpType(escape(name), underlying.size_of, underlying.align_of)
        if isinstance(node, CRecord):
            return CSharpType(escape(name), node.size_of, node.align_of)
        if isinstance(node, CEnum):
            size = self._size_of(name)
            return CSharpType(escape(name), size, size)
        if isinstance(node, CFunctionPointer):
            return CSharpType(escape(name), self._pointer_size, self._pointer_size)
        if isinstance(node, COpaqueType):
            return CSharpType(escape(name), 0)
        # Declarations are never the target of a type reference
        raise _DanglingReference(name)

    def _structural(self, node, context: str) -> CSharpType:
        if isinstance(node, CPrimitive):
            if node.name in self.config.ignored_type_names:
                return self._placeholder(node.name, context)
            alias = self.config.alias_for(node.name)
            if alias is not None:
                return CSharpType(alias, node.size_of, node.align_of)
            return self._primitive(node)
        if isinstance(node, CPointer):
            if node.pointee_type in self.config.ignored_type_names:
                self._placeholder(node.pointee_type, VALUE)
                return CSharpType("void*", self._pointer_size, self._pointer_size)
            # A pointer to an array points at its first element
            context = FIELD if isinstance(self._node(node.pointee_type), CArray) else VALUE
            pointee = self._map_type(node.pointee_type, context)
            return CSharpType(f"{pointee.name}*", self._pointer_size, self._pointer_size)
        element = self._element(node.element_type)
        if context == VALUE:
            # Arrays decay to pointers outside of a record
            return CSharpType(f"{element.name}*", self._pointer_size, self._pointer_size)
        if element.name in FIXED_BUFFER_TYPES and not element.is_fixed_buffer:
            return CSharpType(element.name, node.size_of, element.align_of, array_size=node.element_count)
        return CSharpType(self._fixed_buffer(node, element), node.size_of, element.align_of)

    def _fixed_buffer(self, node: CArray, element: CSharpType) -> str:
        label = f"{element.name}{element.array_size}" if element.is_fixed_buffer else element.name
        name = fixed_buffer_name(label, node.element_count)
        if name not in self._fixed_buffers:
            self._fixed_buffers.add(name)
            self._declarations.append(CSharpFixedBuffer(
                name=name, element_type=element, count=node.element_count, size_of=node.size_of,
                location_comment=f"FixedBuffer @ {node.name}", c_node=node))
        return name

    def _element(self, name: str) -> CSharpType:
        element = self._map_type(name, FIELD)
        node = self._node(name)
        if isinstance(node, CEnum) and element.name == escape(node.name):
            if self._enum_backing(node).size_of != element.size_of:
                # Elements keep the C stride, the narrow C# enum would pack them
                return self._map_type(node.integer_type, FIELD)
        return element
