import json

import pytest

from ast_store import read_ast, write_ast
from diagnostics import ValidationError
from main import default_class_name, main, parse_alias


def test_parse_alias():
    alias = parse_alias("foo_t=Foo")
    assert (alias.source, alias.target) == ("foo_t", "Foo")
    with pytest.raises(ValidationError):
        parse_alias("foo_t")


def test_default_class_name():
    assert default_class_name("sqlite3") == "Sqlite3"
    assert default_class_name("lib/my-lib") == "My_lib"
    assert default_class_name("7z") == "_7z"


def test_cs_command(tmp_path, sample_ast, capsys):
    document = tmp_path / "ast.json"
    output = tmp_path / "Native.cs"
    write_ast(sample_ast, str(document))

    code = main(["cs", str(document), "-o", str(output), "-l", "native", "-n", "Demo",
                 "--alias", "foo_t=Foo"])

    assert code == 0
    text = output.read_text()
    assert "public static unsafe partial class Native" in text
    assert "namespace Demo;" in text
    assert "public static extern Foo get_foo();" in text
    assert "struct foo_t" not in text
    assert str(output) in capsys.readouterr().out


def test_cs_command_with_config(tmp_path, sample_ast):
    document = tmp_path / "ast.json"
    config = tmp_path / "config.json"
    output = tmp_path / "Bindings.cs"
    write_ast(sample_ast, str(document))
    config.write_text(json.dumps({"className": "Sample", "ignoredTypeNames": ["Color"], "bitness": 32}))

    assert main(["cs", str(document), "-o", str(output), "-l", "sample", "--config", str(config)]) == 0
    text = output.read_text()
    assert "public static unsafe partial class Sample" in text
    assert "enum Color" not in text
    assert "public uint Data;" in text


def test_cs_command_fails_on_dangling_references(tmp_path, capsys):
    document = tmp_path / "ast.json"
    output = tmp_path / "Bindings.cs"
    document.write_text(json.dumps({
        "kind": "translationUnit",
        "fileName": "a.h",
        "bitness": 64,
        "nodes": [{"kind": "variable", "name": "x", "type": "Missing", "location": None}],
    }))

    assert main(["cs", str(document), "-o", str(output), "-l", "a"]) == 1
    assert not output.exists()
    assert "DanglingTypeReference" in capsys.readouterr().err


def test_cs_command_rejects_missing_document(tmp_path, capsys):
    output = tmp_path / "Bindings.cs"
    assert main(["cs", str(tmp_path / "missing.json"), "-o", str(output), "-l", "a"]) == 1
    assert not output.exists()
    assert "An error occurred" in capsys.readouterr().err


def test_pipeline(libclang, write_header, tmp_path):
    header = write_header(
        "#define VERSION 3\n"
        "typedef struct { float x, y; } Vec2;\n"
        "float length(Vec2 v);\n"
    )
    document = tmp_path / "ast.json"
    output = tmp_path / "Vec.cs"

    assert main(["ast", header, "-o", str(document), "--bitness", "64"]) == 0
    ast = read_ast(str(document))
    assert [n.name for n in ast.nodes][:1] == ["VERSION"]
    assert "Vec2" in ast

    assert main(["cs", str(document), "-o", str(output), "-l", "vec", "-c", "Vec"]) == 0
    text = output.read_text()
    assert "public const int VERSION = 3;" in text
    assert "public static extern float length(Vec2 v);" in text
    assert "public struct Vec2" in text


def test_broken_header_writes_nothing(libclang, write_header, tmp_path, capsys):
    header = write_header("int broken(;\n")
    document = tmp_path / "ast.json"

    assert main(["ast", header, "-o", str(document)]) == 1
    assert not document.exists()
    assert "An error occurred" in capsys.readouterr().err


def test_extra_clang_arguments(libclang, write_header, tmp_path):
    header = write_header("#ifdef WITH_EXTRA\nint extra(void);\n#endif\n")
    document = tmp_path / "ast.json"

    assert main(["ast", header, "-o", str(document), "--", "-DWITH_EXTRA"]) == 0
    assert "extra" in read_ast(str(document))
