import pytest

from c_ast import (CAbstractSyntaxTree, CArray, CEnum, CEnumValue, CFunction, CFunctionParameter,
                   CFunctionPointer, CLocation, CMacroDefinition, CPointer, CPrimitive, CRecord, CRecordField,
                   CTypedef, CVariable)
from config import MappingConfiguration, TypeAlias
from conftest import build_sample_ast
from diagnostics import Severity
from mapper import CSharpMapper, escape, fixed_buffer_name, narrowest_enum_type
from out_types import (CSharpAliasStruct, CSharpConstant, CSharpEnum, CSharpFixedBuffer, CSharpFunction,
                       CSharpFunctionPointer, CSharpStruct, CSharpVariable)


def map_ast(ast, diagnostics, **kwargs):
    return CSharpMapper(MappingConfiguration("Native", **kwargs), diagnostics).map(ast)


def codes(diagnostics):
    return [d.code for d in diagnostics.all()]


def test_declarations_follow_tree_order(sample_ast, diagnostics):
    target = map_ast(sample_ast, diagnostics)
    assert [d.name for d in target.declarations] == [
        "MAX_POINTS", "Point", "move_point", "Color", "foo_t", "get_foo",
    ]
    assert target.class_name == "Native"
    assert target.bitness == 64
    assert diagnostics.all() == []


def test_function_signature(sample_ast, diagnostics):
    function = map_ast(sample_ast, diagnostics).declaration("move_point")
    assert isinstance(function, CSharpFunction)
    assert function.return_type.name == "void"
    assert [(p.name, p.type.name) for p in function.parameters] == [("p", "Point*"), ("dx", "int")]
    assert function.calling_convention == "Cdecl"
    assert function.location_comment == "Function @ sample.h:8"
    assert function.c_node is sample_ast.node("move_point")


def test_record_layout(sample_ast, diagnostics):
    struct = map_ast(sample_ast, diagnostics).declaration("Point")
    assert isinstance(struct, CSharpStruct)
    assert [(f.name, f.type.name, f.offset, f.padding) for f in struct.fields] == [
        ("x", "int", 0, 0), ("y", "int", 4, 0),
    ]
    assert (struct.size_of, struct.align_of) == (8, 4)


def test_enum_values_are_preserved_with_narrowest_backing(sample_ast, diagnostics):
    enum = map_ast(sample_ast, diagnostics).declaration("Color")
    assert isinstance(enum, CSharpEnum)
    assert enum.integer_type.name == "byte"
    assert [(v.name, v.value) for v in enum.values] == [("A", 0), ("B", 5), ("C", 6)]


@pytest.mark.parametrize("values, expected", [
    ([0, 255], "byte"),
    ([-1, 5], "sbyte"),
    ([0, 256], "ushort"),
    ([-129], "short"),
    ([0x10000], "uint"),
    ([-0x8001, 0x7FFFFFFF], "int"),
    ([0x100000000], "ulong"),
    ([-0x80000001], "long"),
    ([], "byte"),
])
def test_narrowest_enum_type(values, expected):
    assert narrowest_enum_type(values) == expected


def test_platform_integers_follow_bitness(diagnostics):
    wide = map_ast(build_sample_ast(64), diagnostics).declaration("foo_t")
    narrow = map_ast(build_sample_ast(32), diagnostics).declaration("foo_t")
    assert isinstance(wide, CSharpAliasStruct)
    assert wide.underlying_type.name == "ulong"
    assert narrow.underlying_type.name == "uint"
    assert diagnostics.all() == []


def test_requested_bitness_overrides_the_tree(sample_ast, diagnostics):
    target = map_ast(sample_ast, diagnostics, bitness=32)
    assert target.bitness == 32
    assert target.declaration("foo_t").underlying_type.name == "uint"
    assert codes(diagnostics) == ["BitnessMismatch"]
    assert not diagnostics.has_errors


def test_alias_replaces_typedef(sample_ast, diagnostics):
    target = map_ast(sample_ast, diagnostics, aliases=(TypeAlias("foo_t", "Foo"),))
    assert target.declaration("foo_t") is None
    assert target.declaration("get_foo").return_type.name == "Foo"
    assert diagnostics.all() == []


def test_ignore_wins_over_alias(sample_ast, diagnostics):
    target = map_ast(sample_ast, diagnostics, aliases=(TypeAlias("foo_t", "Foo"),),
                     ignored_type_names=frozenset({"foo_t"}))
    assert target.declaration("foo_t") is None
    assert target.declaration("Foo") is None
    get_foo = target.declaration("get_foo")
    assert get_foo.return_type.name == "IntPtr"
    assert "Foo" not in {p.type.name for p in get_foo.parameters} | {get_foo.return_type.name}
    assert diagnostics.at_least(Severity.WARNING)
    assert not diagnostics.has_errors


def test_ignored_type_used_warns_once(sample_ast, diagnostics):
    nodes = sample_ast.nodes + (
        CFunction("reset_point", "void", (CFunctionParameter("p", "Point*"),)),
    )
    ast = CAbstractSyntaxTree(sample_ast.file_name, sample_ast.bitness, nodes)
    target = map_ast(ast, diagnostics, ignored_type_names=frozenset({"Point"}))

    assert target.declaration("Point") is None
    assert target.declaration("move_point").parameters[0].type.name == "void*"
    assert target.declaration("reset_point").parameters[0].type.name == "void*"
    assert codes(diagnostics).count("IgnoredTypeUsed") == 1


def test_ignored_field_type_keeps_the_layout(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("int", 4, 4),
        CRecord("Inner", False, (CRecordField("a", "int", 0, 4), CRecordField("b", "int", 4, 4)), 8, 4),
        CRecord("Outer", False, (CRecordField("inner", "Inner", 0, 8),), 8, 4),
    ))
    outer = map_ast(ast, diagnostics, ignored_type_names=frozenset({"Inner"})).declaration("Outer")
    field = outer.fields[0]
    assert (field.type.name, field.type.array_size) == ("byte", 8)
    assert codes(diagnostics) == ["IgnoredTypeUsed"]


def test_dangling_reference_skips_the_declaration(sample_ast, diagnostics):
    nodes = sample_ast.nodes + (CFunction("broken", "Missing", (), location=CLocation("sample.h", 20)),)
    target = map_ast(CAbstractSyntaxTree("sample.h", 64, nodes), diagnostics)
    assert target.declaration("broken") is None
    assert target.declaration("get_foo") is not None
    assert codes(diagnostics) == ["DanglingTypeReference"]
    assert diagnostics.has_errors


def test_variadic_function_is_skipped(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("int", 4, 4),
        CFunction("printf_like", "int", (CFunctionParameter("level", "int"),), is_variadic=True),
    ))
    target = map_ast(ast, diagnostics)
    assert target.declarations == ()
    assert codes(diagnostics) == ["UnmappableConstruct"]
    assert diagnostics.all()[0].severity == Severity.WARNING


def test_padding_and_arrays(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("char", 1, 1),
        CPrimitive("int", 4, 4),
        CArray("int[4]", "int", 4, 16),
        CRecord("Point", False, (CRecordField("x", "int", 0, 4), CRecordField("y", "int", 4, 4)), 8, 4),
        CArray("Point[4]", "Point", 4, 32),
        CRecord("Shape", False, (
            CRecordField("tag", "char", 0, 1),
            CRecordField("data", "int[4]", 4, 16),
            CRecordField("corners", "Point[4]", 20, 32),
        ), 52, 4),
    ))
    target = map_ast(ast, diagnostics)
    assert [d.name for d in target.declarations] == ["Point", "FixedBuffer_Point_four", "Shape"]

    tag, data, corners = target.declaration("Shape").fields
    assert (tag.offset, tag.padding) == (0, 3)
    assert (data.type.name, data.type.array_size, data.type.is_fixed_buffer) == ("int", 4, True)
    assert corners.type.name == "FixedBuffer_Point_four"

    helper = target.declaration("FixedBuffer_Point_four")
    assert isinstance(helper, CSharpFixedBuffer)
    assert (helper.element_type.name, helper.count, helper.size_of) == ("Point", 4, 32)


def test_union_padding(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("char", 1, 1),
        CPrimitive("double", 8, 8),
        CRecord("Value", True, (CRecordField("c", "char", 0, 1), CRecordField("d", "double", 0, 8)), 8, 8),
    ))
    union = map_ast(ast, diagnostics).declaration("Value")
    assert [(f.offset, f.padding) for f in union.fields] == [(0, 7), (0, 0)]
    assert union.location_comment == "Union"


def test_array_parameters_decay(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("float", 4, 4),
        CArray("float[3]", "float", 3, 12),
        CPrimitive("void", 0, 0),
        CFunction("scale", "void", (CFunctionParameter("v", "float[3]"),)),
        CVariable("origin", "float[3]"),
    ))
    target = map_ast(ast, diagnostics)
    assert target.declaration("scale").parameters[0].type.name == "float*"
    variable = target.declaration("origin")
    assert isinstance(variable, CSharpVariable)
    assert (variable.type.name, variable.c_name) == ("float", "origin")


def test_function_pointer_and_keywords(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("int", 4, 4),
        CPrimitive("char", 1, 1),
        CPointer("char*", "char", 8),
        CFunctionPointer("FnPtr_Int_CharPtr", "int", (CFunctionParameter("", "char*"),), 8),
        CTypedef("callback", "FnPtr_Int_CharPtr"),
        CFunction("register", "int", (CFunctionParameter("string", "callback"), CFunctionParameter("", "int"))),
    ))
    target = map_ast(ast, diagnostics)
    pointer = target.declaration("FnPtr_Int_CharPtr")
    assert isinstance(pointer, CSharpFunctionPointer)
    assert [p.type.name for p in pointer.parameters] == ["byte*"]
    assert pointer.parameters[0].name == "arg0"
    assert target.declaration("callback").underlying_type.name == "FnPtr_Int_CharPtr"

    function = target.declaration("register")
    assert [(p.name, p.type.name) for p in function.parameters] == [("@string", "callback"), ("arg1", "int")]


def test_macro_constants(sample_ast, diagnostics):
    nodes = sample_ast.nodes + (
        CPrimitive("char", 1, 1),
        CPointer("char*", "char", 8),
        CMacroDefinition("LIB_NAME", "char*", '"native"'),
    )
    target = map_ast(CAbstractSyntaxTree("sample.h", 64, nodes), diagnostics)
    constant = target.declaration("MAX_POINTS")
    assert isinstance(constant, CSharpConstant)
    assert (constant.type, constant.value) == ("int", "unchecked((int)((1<<4)))")
    name = target.declaration("LIB_NAME")
    assert (name.type, name.value) == ("string", '"native"')


def test_mapping_is_deterministic(sample_ast, diagnostics):
    assert map_ast(sample_ast, diagnostics) == map_ast(sample_ast, diagnostics)


def test_helpers():
    assert escape("string") == "@string"
    assert escape("size") == "size"
    assert fixed_buffer_name("Point", 4) == "FixedBuffer_Point_four"
    assert fixed_buffer_name("void*", 24) == "FixedBuffer_VoidPtr_twenty_four"


def palette_ast(values):
    return CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("unsigned int", 4, 4),
        CEnum("Color", "unsigned int", tuple(CEnumValue(f"C{i}", v) for i, v in enumerate(values))),
        CArray("Color[4]", "Color", 4, 16),
        CPrimitive("int", 4, 4),
        CRecord("Palette", False, (
            CRecordField("colors", "Color[4]", 0, 16),
            CRecordField("count", "int", 16, 4),
        ), 20, 4),
    ))


def test_enum_array_keeps_the_c_stride(diagnostics):
    target = map_ast(palette_ast([0, 1, 2]), diagnostics)
    assert target.declaration("Color").integer_type.name == "byte"
    assert [d.name for d in target.declarations] == ["Color", "Palette"]

    colors, count = target.declaration("Palette").fields
    assert (colors.type.name, colors.type.array_size, colors.type.size_of) == ("uint", 4, 16)
    assert (count.offset, colors.padding) == (16, 0)
    assert diagnostics.all() == []


def test_enum_array_with_a_full_width_backing_keeps_the_enum(diagnostics):
    target = map_ast(palette_ast([0, 0x10000]), diagnostics)
    assert target.declaration("Color").integer_type.name == "uint"
    colors = target.declaration("Palette").fields[0]
    assert colors.type.name == "FixedBuffer_Color_four"
    helper = target.declaration("FixedBuffer_Color_four")
    assert (helper.element_type.name, helper.element_type.size_of, helper.size_of) == ("Color", 4, 16)


def test_platform_integers_use_the_extracted_width(diagnostics):
    ast = CAbstractSyntaxTree("a.h", 64, (
        CPrimitive("long", 4, 4),
        CPrimitive("unsigned long", 4, 4),
        CPrimitive("int", 4, 4),
        CRecord("S", False, (
            CRecordField("a", "long", 0, 4),
            CRecordField("b", "unsigned long", 4, 4),
            CRecordField("c", "int", 8, 4),
        ), 12, 4),
    ))
    fields = map_ast(ast, diagnostics).declaration("S").fields
    assert [(f.type.name, f.type.size_of, f.offset) for f in fields] == [("int", 4, 0), ("uint", 4, 4), ("int", 4, 8)]

    # Remapping for another bitness falls back to the table
    narrow = map_ast(ast, diagnostics, bitness=32).declaration("S").fields
    assert narrow[0].type.name == "int"
