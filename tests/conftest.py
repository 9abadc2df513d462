"""Pytest configuration for the sharpbindgen test suite."""

import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from diagnostics import DiagnosticsSink  # noqa: E402


@pytest.fixture
def diagnostics() -> DiagnosticsSink:
    return DiagnosticsSink()


@pytest.fixture
def write_header(tmp_path):
    """Writes a header into the test's temporary directory and returns its path."""

    def write(source: str, name: str = "test.h") -> str:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source)
        return str(path)

    return write


@pytest.fixture(scope="session")
def libclang():
    """Skips the test when the native libclang library cannot be loaded."""
    try:
        from clang.cindex import Index

        Index.create()
    except Exception as e:  # noqa: BLE001
        pytest.skip(f"libclang is not available: {e}")


def build_sample_ast(bitness: int = 64):
    """A small hand built tree covering the common node kinds."""
    from c_ast import (CAbstractSyntaxTree, CEnum, CEnumValue, CFunction, CFunctionParameter, CLocation,
                       CMacroDefinition, CPointer, CPrimitive, CRecord, CRecordField, CTypedef)

    word = bitness // 8
    return CAbstractSyntaxTree(
        file_name="sample.h",
        bitness=bitness,
        nodes=(
            CMacroDefinition("MAX_POINTS", "int", "(1<<4)", CLocation("sample.h", 1)),
            CPrimitive("int", 4, 4),
            CRecord(
                "Point", False,
                (CRecordField("x", "int", 0, 4), CRecordField("y", "int", 4, 4)),
                8, 4, CLocation("sample.h", 3),
            ),
            CPrimitive("void", 0, 0),
            CPointer("Point*", "Point", word),
            CFunction(
                "move_point", "void",
                (CFunctionParameter("p", "Point*"), CFunctionParameter("dx", "int")),
                location=CLocation("sample.h", 8),
            ),
            CPrimitive("unsigned int", 4, 4),
            CEnum(
                "Color", "unsigned int",
                (CEnumValue("A", 0), CEnumValue("B", 5), CEnumValue("C", 6)),
                CLocation("sample.h", 10),
            ),
            CPrimitive("unsigned long", word, word),
            CTypedef("foo_t", "unsigned long", CLocation("sample.h", 12)),
            CFunction("get_foo", "foo_t", (), location=CLocation("sample.h", 13)),
        ),
    )


@pytest.fixture
def sample_ast():
    return build_sample_ast()
