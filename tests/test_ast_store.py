import json

import pytest

from ast_store import dump_ast, load_ast, node_to_dict, read_ast, write_ast
from c_ast import (CAbstractSyntaxTree, CArray, CFunction, CFunctionParameter, CFunctionPointer, CKind, CLocation,
                   COpaqueType, CPointer, CPrimitive, CTypedef, CVariable)
from diagnostics import ValidationError


def test_document_layout(sample_ast):
    document = json.loads(dump_ast(sample_ast))
    assert document["kind"] == "translationUnit"
    assert document["fileName"] == "sample.h"
    assert document["bitness"] == 64
    assert [n["name"] for n in document["nodes"]] == [n.name for n in sample_ast.nodes]

    point = document["nodes"][2]
    assert point == {
        "kind": "record",
        "name": "Point",
        "isUnion": False,
        "fields": [
            {"name": "x", "type": "int", "offset": 0, "sizeOf": 4},
            {"name": "y", "type": "int", "offset": 4, "sizeOf": 4},
        ],
        "sizeOf": 8,
        "alignOf": 4,
        "location": {"filePath": "sample.h", "line": 3},
    }
    assert document["nodes"][1]["location"] is None


def test_round_trip_is_byte_identical(sample_ast):
    text = dump_ast(sample_ast)
    loaded = load_ast(text)
    assert loaded == sample_ast
    assert dump_ast(loaded) == text
    assert text.endswith("}\n")


def test_round_trip_of_remaining_kinds():
    ast = CAbstractSyntaxTree(
        file_name="more.h",
        bitness=32,
        nodes=(
            CPrimitive("char", 1, 1),
            CArray("char[16]", "char", 16, 16),
            COpaqueType("Handle", CLocation("more.h", 2)),
            CPointer("Handle*", "Handle", 4),
            CFunctionPointer("FnPtr_Char_HandlePtr", "char", (CFunctionParameter("", "Handle*"),), 4),
            CVariable("buffer", "char[16]", CLocation("more.h", 5)),
            CFunction("log_message", "char", (CFunctionParameter("fmt", "Handle*"),), is_variadic=True),
        ),
    )
    text = dump_ast(ast)
    assert load_ast(text) == ast
    assert dump_ast(load_ast(text)) == text


def test_file_round_trip(tmp_path, sample_ast):
    path = tmp_path / "out" / "ast.json"
    write_ast(sample_ast, str(path))
    assert read_ast(str(path)) == sample_ast
    assert list(path.parent.iterdir()) == [path]


def test_loaded_tree_supports_lookups(sample_ast):
    loaded = load_ast(dump_ast(sample_ast))
    assert "Point" in loaded
    assert loaded.node("Color").values[1].value == 5
    assert [n.name for n in loaded.of_kind(CKind.FUNCTION)] == ["move_point", "get_foo"]
    assert loaded.dangling_references() == []
    assert loaded.size_of("foo_t") == 8


def test_unknown_kind_is_rejected(sample_ast):
    document = json.loads(dump_ast(sample_ast))
    document["nodes"][0]["kind"] = "lambda"
    with pytest.raises(ValidationError):
        load_ast(json.dumps(document))


@pytest.mark.parametrize("text", ["not json", "[]", '{"kind": "record"}', '{"kind": "translationUnit"}'])
def test_malformed_documents(text):
    with pytest.raises(ValidationError):
        load_ast(text)


def test_missing_file(tmp_path):
    with pytest.raises(ValidationError):
        read_ast(str(tmp_path / "missing.json"))


def test_duplicate_names_are_rejected():
    with pytest.raises(ValidationError):
        CAbstractSyntaxTree("a.h", 64, (CPrimitive("int", 4, 4), CPrimitive("int", 4, 4)))


def test_dangling_references_are_reported():
    ast = CAbstractSyntaxTree("a.h", 64, (CPointer("Missing*", "Missing", 8),))
    assert ast.dangling_references() == [("Missing*", "Missing")]


def test_reference_keys_name_their_role():
    assert node_to_dict(CPointer("int*", "int", 8)) == {
        "kind": "pointer", "name": "int*", "pointeeType": "int", "sizeOf": 8, "location": None,
    }
    assert node_to_dict(CArray("int[2]", "int", 2, 8)) == {
        "kind": "array", "name": "int[2]", "elementType": "int", "elementCount": 2, "sizeOf": 8, "location": None,
    }
    assert node_to_dict(CTypedef("foo_t", "int", CLocation("a.h", 2))) == {
        "kind": "typedef", "name": "foo_t", "underlyingType": "int", "location": {"filePath": "a.h", "line": 2},
    }
    assert list(node_to_dict(CVariable("x", "int"))) == ["kind", "name", "type", "location"]
