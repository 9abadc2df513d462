import json
import os
import tempfile
from typing import Any, Dict, Optional, assert_never

from c_ast import (CAbstractSyntaxTree, CArray, CEnum, CEnumValue, CFunction, CFunctionParameter,
                   CFunctionPointer, CKind, CLocation, CMacroDefinition, CNode, COpaqueType, CPointer,
                   CPrimitive, CRecord, CRecordField, CTypedef, CVariable)
from diagnostics import ValidationError


# --- Serialization ---

def _location(location: Optional[CLocation]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {"filePath": location.file_path, "line": location.line}


def _parameters(parameters) -> list:
    return [{"name": p.name, "type": p.type} for p in parameters]


def node_to_dict(node: CNode) -> Dict[str, Any]:
    data: Dict[str, Any] = {"kind": node.kind.value, "name": node.name}
    if isinstance(node, CPrimitive):
        data.update(sizeOf=node.size_of, alignOf=node.align_of)
    elif isinstance(node, CPointer):
        data.update(pointeeType=node.pointee_type, sizeOf=node.size_of)
    elif isinstance(node, CArray):
        data.update(elementType=node.element_type, elementCount=node.element_count, sizeOf=node.size_of)
    elif isinstance(node, CFunctionPointer):
        data.update(returnType=node.return_type, parameters=_parameters(node.parameters), sizeOf=node.size_of)
    elif isinstance(node, CRecord):
        data.update(
            isUnion=node.is_union,
            fields=[{"name": f.name, "type": f.type, "offset": f.offset, "sizeOf": f.size_of} for f in node.fields],
            sizeOf=node.size_of,
            alignOf=node.align_of,
        )
    elif isinstance(node, CEnum):
        data.update(integerType=node.integer_type, values=[node_to_dict(v) for v in node.values])
    elif isinstance(node, CEnumValue):
        data.update(value=node.value)
    elif isinstance(node, COpaqueType):
        pass
    elif isinstance(node, CTypedef):
        data.update(underlyingType=node.underlying_type)
    elif isinstance(node, CFunction):
        data.update(
            returnType=node.return_type,
            parameters=_parameters(node.parameters),
            isVariadic=node.is_variadic,
            callingConvention=node.calling_convention,
        )
    elif isinstance(node, CVariable):
        data.update(type=node.type)
    elif isinstance(node, CMacroDefinition):
        data.update(type=node.type, value=node.value)
    else:
        assert_never(node)
    data["location"] = _location(node.location)
    return data


def dump_ast(ast: CAbstractSyntaxTree) -> str:
    """Canonical JSON text; equal trees always produce identical bytes."""
    document = {
        "kind": ast.kind.value,
        "fileName": ast.file_name,
        "bitness": ast.bitness,
        "nodes": [node_to_dict(n) for n in ast.nodes],
    }
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


# --- Deserialization ---

def _read_location(data: Dict[str, Any]) -> Optional[CLocation]:
    location = data.get("location")
    if location is None:
        return None
    return CLocation(file_path=location["filePath"], line=location["line"])


def _read_parameters(data: Dict[str, Any]):
    return tuple(CFunctionParameter(name=p["name"], type=p["type"]) for p in data["parameters"])


def node_from_dict(data: Dict[str, Any]) -> CNode:
    try:
        kind = CKind(data["kind"])
    except (KeyError, ValueError) as e:
        raise ValidationError(f"Unknown node kind: {data.get('kind')!r}") from e
    name = data["name"]
    location = _read_location(data)

    if kind == CKind.PRIMITIVE:
        return CPrimitive(name, data["sizeOf"], data["alignOf"], location)
    if kind == CKind.POINTER:
        return CPointer(name, data["pointeeType"], data["sizeOf"], location)
    if kind == CKind.ARRAY:
        return CArray(name, data["elementType"], data["elementCount"], data["sizeOf"], location)
    if kind == CKind.FUNCTION_POINTER:
        return CFunctionPointer(name, data["returnType"], _read_parameters(data), data["sizeOf"], location)
    if kind == CKind.RECORD:
        fields = tuple(CRecordField(f["name"], f["type"], f["offset"], f["sizeOf"]) for f in data["fields"])
        return CRecord(name, data["isUnion"], fields, data["sizeOf"], data["alignOf"], location)
    if kind == CKind.ENUM:
        values = []
        for v in data["values"]:
            value = node_from_dict(v)
            if not isinstance(value, CEnumValue):
                raise ValidationError(f"Enum '{name}' holds a '{v.get('kind')}' node.")
            values.append(value)
        return CEnum(name, data["integerType"], tuple(values), location)
    if kind == CKind.ENUM_VALUE:
        return CEnumValue(name, data["value"], location)
    if kind == CKind.OPAQUE_TYPE:
        return COpaqueType(name, location)
    if kind == CKind.TYPEDEF:
        return CTypedef(name, data["underlyingType"], location)
    if kind == CKind.FUNCTION:
        return CFunction(name, data["returnType"], _read_parameters(data), data["isVariadic"],
                         data["callingConvention"], location)
    if kind == CKind.VARIABLE:
        return CVariable(name, data["type"], location)
    if kind == CKind.MACRO_DEFINITION:
        return CMacroDefinition(name, data["type"], data["value"], location)
    raise ValidationError(f"Node kind '{kind.value}' cannot appear inside a translation unit.")


def load_ast(text: str) -> CAbstractSyntaxTree:
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed abstract syntax tree document: {e}") from e
    if not isinstance(document, dict) or document.get("kind") != CKind.TRANSLATION_UNIT.value:
        raise ValidationError("The document is not a translation unit.")
    try:
        nodes = tuple(node_from_dict(n) for n in document["nodes"])
        return CAbstractSyntaxTree(file_name=document["fileName"], bitness=document["bitness"], nodes=nodes)
    except (KeyError, TypeError) as e:
        raise ValidationError(f"Malformed abstract syntax tree document: missing {e}") from e


# --- Files ---

def write_text_atomic(path: str, text: str):
    """Writes through a temporary file in the same directory so readers never see a partial file."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.basename(path))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def write_ast(ast: CAbstractSyntaxTree, path: str):
    write_text_atomic(path, dump_ast(ast))


def read_ast(path: str) -> CAbstractSyntaxTree:
    if not os.path.isfile(path):
        raise ValidationError(f"File does not exist: `{path}`.")
    with open(path, encoding="utf-8") as f:
        return load_ast(f.read())
