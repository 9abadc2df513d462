from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

from diagnostics import ValidationError


class CKind(Enum):
    TRANSLATION_UNIT = "translationUnit"
    PRIMITIVE = "primitive"
    POINTER = "pointer"
    ARRAY = "array"
    FUNCTION = "function"
    FUNCTION_POINTER = "functionPointer"
    RECORD = "record"
    ENUM = "enum"
    ENUM_VALUE = "enumValue"
    OPAQUE_TYPE = "opaqueType"
    TYPEDEF = "typedef"
    VARIABLE = "variable"
    MACRO_DEFINITION = "macroDefinition"


@dataclass(frozen=True)
class CLocation:
    file_path: str
    line: int

    def __str__(self) -> str:
        return f"{self.file_path}:{self.line}"


# --- Types ---

@dataclass(frozen=True)
class CPrimitive:
    name: str
    size_of: int
    align_of: int
    location: Optional[CLocation] = None
    kind = CKind.PRIMITIVE


@dataclass(frozen=True)
class CPointer:
    name: str
    pointee_type: str
    size_of: int
    location: Optional[CLocation] = None
    kind = CKind.POINTER


@dataclass(frozen=True)
class CArray:
    name: str
    element_type: str
    element_count: int
    size_of: int
    location: Optional[CLocation] = None
    kind = CKind.ARRAY


@dataclass(frozen=True)
class CFunctionParameter:
    name: str
    type: str


@dataclass(frozen=True)
class CFunctionPointer:
    name: str
    return_type: str
    parameters: Tuple[CFunctionParameter, ...]
    size_of: int
    location: Optional[CLocation] = None
    kind = CKind.FUNCTION_POINTER


@dataclass(frozen=True)
class CRecordField:
    name: str
    type: str
    offset: int
    size_of: int


@dataclass(frozen=True)
class CRecord:
    name: str
    is_union: bool
    fields: Tuple[CRecordField, ...]
    size_of: int
    align_of: int
    location: Optional[CLocation] = None
    kind = CKind.RECORD


@dataclass(frozen=True)
class CEnumValue:
    name: str
    value: int
    location: Optional[CLocation] = None
    kind = CKind.ENUM_VALUE


@dataclass(frozen=True)
class CEnum:
    name: str
    integer_type: str
    values: Tuple[CEnumValue, ...]
    location: Optional[CLocation] = None
    kind = CKind.ENUM


@dataclass(frozen=True)
class COpaqueType:
    name: str
    location: Optional[CLocation] = None
    kind = CKind.OPAQUE_TYPE


@dataclass(frozen=True)
class CTypedef:
    name: str
    underlying_type: str
    location: Optional[CLocation] = None
    kind = CKind.TYPEDEF


# --- Declarations ---

@dataclass(frozen=True)
class CFunction:
    name: str
    return_type: str
    parameters: Tuple[CFunctionParameter, ...]
    is_variadic: bool = False
    calling_convention: str = "cdecl"
    location: Optional[CLocation] = None
    kind = CKind.FUNCTION


@dataclass(frozen=True)
class CVariable:
    name: str
    type: str
    location: Optional[CLocation] = None
    kind = CKind.VARIABLE


@dataclass(frozen=True)
class CMacroDefinition:
    name: str
    type: str
    value: str
    location: Optional[CLocation] = None
    kind = CKind.MACRO_DEFINITION


CType = Union[CPrimitive, CPointer, CArray, CFunctionPointer, CRecord, CEnum, COpaqueType, CTypedef]
CNode = Union[
    CPrimitive, CPointer, CArray, CFunctionPointer, CRecord, CEnum, CEnumValue,
    COpaqueType, CTypedef, CFunction, CVariable, CMacroDefinition,
]

TYPE_NODES = (CPrimitive, CPointer, CArray, CFunctionPointer, CRecord, CEnum, COpaqueType, CTypedef)


def type_references(node: CNode) -> List[str]:
    """Names of the type nodes that `node` refers to, in declaration order."""
    if isinstance(node, CPointer):
        return [node.pointee_type]
    if isinstance(node, CArray):
        return [node.element_type]
    if isinstance(node, (CFunction, CFunctionPointer)):
        return [node.return_type] + [p.type for p in node.parameters]
    if isinstance(node, CRecord):
        return [f.type for f in node.fields]
    if isinstance(node, CEnum):
        return [node.integer_type]
    if isinstance(node, CTypedef):
        return [node.underlying_type]
    if isinstance(node, (CVariable, CMacroDefinition)):
        return [node.type]
    return []


@dataclass(frozen=True)
class CAbstractSyntaxTree:
    """The translation unit: an ordered, immutable set of canonical nodes."""
    file_name: str
    bitness: int
    nodes: Tuple[CNode, ...] = ()
    _index: Dict[str, CNode] = field(default_factory=dict, init=False, repr=False, compare=False)
    kind = CKind.TRANSLATION_UNIT

    def __post_init__(self):
        if self.bitness not in (32, 64):
            raise ValidationError(f"Bitness must be 32 or 64, got {self.bitness}.")
        for node in self.nodes:
            if node.name in self._index:
                raise ValidationError(f"Duplicate node '{node.name}' in the abstract syntax tree.")
            self._index[node.name] = node

    def __iter__(self) -> Iterator[CNode]:
        return iter(self.nodes)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def node(self, name: str) -> Optional[CNode]:
        return self._index.get(name)

    def of_kind(self, kind: CKind) -> List[CNode]:
        return [n for n in self.nodes if n.kind == kind]

    def dangling_references(self) -> List[Tuple[str, str]]:
        """Pairs of (node name, missing type name) for every unresolved reference."""
        missing = []
        for node in self.nodes:
            for ref in type_references(node):
                if ref not in self._index or not isinstance(self._index[ref], TYPE_NODES):
                    missing.append((node.name, ref))
        return missing

    def resolve_typedef(self, name: str) -> CNode:
        """Follows a typedef chain down to its first non-typedef node."""
        seen = set()
        node = self._index.get(name)
        while isinstance(node, CTypedef):
            if node.name in seen:
                raise ValidationError(f"Typedef cycle through '{node.name}'.")
            seen.add(node.name)
            node = self._index.get(node.underlying_type)
        if node is None:
            raise ValidationError(f"Type '{name}' does not resolve to a node.")
        return node

    def size_of(self, name: str) -> int:
        node = self.resolve_typedef(name)
        if isinstance(node, CEnum):
            return self.size_of(node.integer_type)
        return getattr(node, "size_of", 0)
