from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from c_ast import CNode


class CSharpKind(Enum):
    FUNCTION = "function"
    FUNCTION_POINTER = "functionPointer"
    STRUCT = "struct"
    OPAQUE_TYPE = "opaqueType"
    ENUM = "enum"
    ALIAS_STRUCT = "aliasStruct"
    FIXED_BUFFER = "fixedBuffer"
    CONSTANT = "constant"
    VARIABLE = "variable"


@dataclass(frozen=True)
class CSharpType:
    """A C# type spelling plus the native layout it stands for."""
    name: str
    size_of: int
    align_of: int = 0
    # Element count when the type is emitted as a `fixed` buffer field
    array_size: Optional[int] = None

    @property
    def is_fixed_buffer(self) -> bool:
        return self.array_size is not None


@dataclass(frozen=True)
class CSharpParameter:
    name: str
    type: CSharpType


@dataclass(frozen=True)
class CSharpFunction:
    name: str
    return_type: CSharpType
    parameters: Tuple[CSharpParameter, ...]
    calling_convention: str = "Cdecl"
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.FUNCTION


@dataclass(frozen=True)
class CSharpFunctionPointer:
    name: str
    return_type: CSharpType
    parameters: Tuple[CSharpParameter, ...]
    calling_convention: str = "Cdecl"
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.FUNCTION_POINTER


@dataclass(frozen=True)
class CSharpStructField:
    name: str
    type: CSharpType
    offset: int
    padding: int = 0


@dataclass(frozen=True)
class CSharpStruct:
    name: str
    fields: Tuple[CSharpStructField, ...]
    size_of: int
    align_of: int
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.STRUCT


@dataclass(frozen=True)
class CSharpOpaqueType:
    name: str
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.OPAQUE_TYPE


@dataclass(frozen=True)
class CSharpEnumValue:
    name: str
    value: int


@dataclass(frozen=True)
class CSharpEnum:
    name: str
    integer_type: CSharpType
    values: Tuple[CSharpEnumValue, ...]
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.ENUM


@dataclass(frozen=True)
class CSharpAliasStruct:
    """A typedef kept as a distinct type: one `Data` field and implicit conversions."""
    name: str
    underlying_type: CSharpType
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.ALIAS_STRUCT


@dataclass(frozen=True)
class CSharpFixedBuffer:
    """Sequential helper struct holding `count` elements of a non-primitive type."""
    name: str
    element_type: CSharpType
    count: int
    size_of: int
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.FIXED_BUFFER


@dataclass(frozen=True)
class CSharpConstant:
    name: str
    type: str
    value: str
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.CONSTANT


@dataclass(frozen=True)
class CSharpVariable:
    name: str
    c_name: str
    type: CSharpType
    location_comment: str = ""
    c_node: Optional[CNode] = field(default=None, compare=False, repr=False)
    kind = CSharpKind.VARIABLE


CSharpNode = Union[
    CSharpFunction, CSharpFunctionPointer, CSharpStruct, CSharpOpaqueType, CSharpEnum,
    CSharpAliasStruct, CSharpFixedBuffer, CSharpConstant, CSharpVariable,
]


@dataclass(frozen=True)
class CSharpAbstractSyntaxTree:
    class_name: str
    bitness: int
    declarations: Tuple[CSharpNode, ...] = ()

    def of_kind(self, kind: CSharpKind) -> Tuple[CSharpNode, ...]:
        return tuple(d for d in self.declarations if d.kind == kind)

    def declaration(self, name: str) -> Optional[CSharpNode]:
        for d in self.declarations:
            if d.name == name:
                return d
        return None
