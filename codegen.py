from typing import List, Set, assert_never

from config import CodeGeneratorOptions
from out_types import (CSharpAbstractSyntaxTree, CSharpAliasStruct, CSharpConstant, CSharpEnum,
                       CSharpFixedBuffer, CSharpFunction, CSharpFunctionPointer, CSharpNode, CSharpOpaqueType,
                       CSharpStruct, CSharpStructField, CSharpType, CSharpVariable)

INDENT = "    "


def _comment(node: CSharpNode) -> str:
    return f"// {node.location_comment}" if node.location_comment else ""


def _struct_layout(size_of: int, align_of: int) -> str:
    arguments = ["LayoutKind.Explicit"]
    if size_of > 0:
        arguments.append(f"Size = {size_of}")
    if align_of > 0:
        arguments.append(f"Pack = {align_of}")
    return f"[StructLayout({', '.join(arguments)})]"


def _member(type_: CSharpType, name: str) -> str:
    if type_.is_fixed_buffer:
        return f"public fixed {type_.name} {name}[{type_.array_size}];"
    return f"public {type_.name} {name};"


class CSharpCodeGenerator:
    """
    Renders a C# abstract syntax tree into one source file. The output depends
    only on the tree and the options: no timestamps, no host paths.
    """

    def __init__(self, options: CodeGeneratorOptions):
        self.options = options

    def generate(self, ast: CSharpAbstractSyntaxTree) -> str:
        seen: Set[str] = set()
        functions: List[CSharpNode] = []
        variables: List[CSharpNode] = []
        constants: List[CSharpNode] = []
        types: List[CSharpNode] = []
        for declaration in ast.declarations:
            if declaration.name in seen:
                continue
            seen.add(declaration.name)
            if isinstance(declaration, CSharpFunction):
                functions.append(declaration)
            elif isinstance(declaration, CSharpVariable):
                variables.append(declaration)
            elif isinstance(declaration, CSharpConstant):
                constants.append(declaration)
            else:
                types.append(declaration)

        body: List[List[str]] = [[f'private const string LibraryName = "{self.options.library_name}";']]
        if variables:
            body.append(self._library_handle(ast.class_name))
        for declaration in functions + variables + constants + types:
            body.append(self._declaration(declaration))

        lines = self._file_header()
        if self.options.namespace:
            lines += [f"namespace {self.options.namespace};", ""]
        lines += [f"public static unsafe partial class {ast.class_name}", "{"]
        for i, block in enumerate(body):
            if i:
                lines.append("")
            lines += [f"{INDENT}{line}" if line else "" for line in block]
        lines.append("}")
        return "\n".join(lines) + "\n"

    def _file_header(self) -> List[str]:
        source = f" from '{self.options.header_name}'" if self.options.header_name else ""
        return [
            "// <auto-generated>",
            f"//  This code was generated by sharpbindgen{source}.",
            "//  Changes to this file will be lost when the code is regenerated.",
            "// </auto-generated>",
            "",
            "#nullable enable",
            "using System;",
            "using System.Runtime.InteropServices;",
            "",
        ]

    @staticmethod
    def _library_handle(class_name: str) -> List[str]:
        return [
            "private static IntPtr _libraryHandle;",
            "",
            "private static IntPtr LibraryHandle",
            "{",
            "    get",
            "    {",
            "        if (_libraryHandle == IntPtr.Zero)",
            "        {",
            f"            _libraryHandle = NativeLibrary.Load(LibraryName, typeof({class_name}).Assembly, null);",
            "        }",
            "        return _libraryHandle;",
            "    }",
            "}",
        ]

    def _declaration(self, node: CSharpNode) -> List[str]:
        lines = [_comment(node)] if node.location_comment else []
        if isinstance(node, CSharpFunction):
            parameters = ", ".join(f"{p.type.name} {p.name}" for p in node.parameters)
            lines += [
                f"[DllImport(LibraryName, CallingConvention = CallingConvention.{node.calling_convention})]",
                f"public static extern {node.return_type.name} {node.name}({parameters});",
            ]
        elif isinstance(node, CSharpVariable):
            type_name = node.type.name
            lines.append(f'public static ref {type_name} {node.name} => '
                         f'ref *({type_name}*)NativeLibrary.GetExport(LibraryHandle, "{node.c_name}");')
        elif isinstance(node, CSharpConstant):
            lines.append(f"public const {node.type} {node.name} = {node.value};")
        elif isinstance(node, CSharpStruct):
            lines += [_struct_layout(node.size_of, node.align_of), f"public struct {node.name}", "{"]
            for i, f in enumerate(node.fields):
                if i:
                    lines.append("")
                lines += [INDENT + line for line in self._field(f)]
            lines.append("}")
        elif isinstance(node, CSharpOpaqueType):
            lines += ["[StructLayout(LayoutKind.Sequential)]", f"public struct {node.name}", "{", "}"]
        elif isinstance(node, CSharpEnum):
            lines += [f"public enum {node.name} : {node.integer_type.name}", "{"]
            lines += [f"{INDENT}{v.name} = {v.value}," for v in node.values]
            lines.append("}")
        elif isinstance(node, CSharpAliasStruct):
            lines += self._alias_struct(node)
        elif isinstance(node, CSharpFunctionPointer):
            type_arguments = [p.type.name for p in node.parameters] + [node.return_type.name]
            lines += [
                "[StructLayout(LayoutKind.Sequential)]",
                f"public struct {node.name}",
                "{",
                f"{INDENT}public delegate* unmanaged[{node.calling_convention}]<{', '.join(type_arguments)}> Pointer;",
                "}",
            ]
        elif isinstance(node, CSharpFixedBuffer):
            lines += ["[StructLayout(LayoutKind.Sequential)]", f"public struct {node.name}", "{"]
            lines += [INDENT + _member(node.element_type, f"Element{i}") for i in range(node.count)]
            lines.append("}")
        else:
            assert_never(node)
        return lines

    @staticmethod
    def _field(f: CSharpStructField) -> List[str]:
        return [
            f"[FieldOffset({f.offset})] // size = {f.type.size_of}, padding = {f.padding}",
            _member(f.type, f.name),
        ]

    @staticmethod
    def _alias_struct(node: CSharpAliasStruct) -> List[str]:
        underlying = node.underlying_type
        lines = [
            _struct_layout(underlying.size_of, underlying.align_of),
            f"public struct {node.name}",
            "{",
            f"{INDENT}[FieldOffset(0)] // size = {underlying.size_of}, padding = 0",
            f"{INDENT}{_member(underlying, 'Data')}",
        ]
        if not underlying.is_fixed_buffer:
            lines += [
                "",
                f"{INDENT}public static implicit operator {underlying.name}({node.name} data) => data.Data;",
                f"{INDENT}public static implicit operator {node.name}({underlying.name} data) => new() {{ Data = data }};",
            ]
        lines.append("}")
        return lines
