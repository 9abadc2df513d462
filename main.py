#!/usr/bin/env python3
import argparse
import os
import re
import sys
from typing import List, Optional, Sequence

from ast_store import read_ast, write_ast, write_text_atomic
from c_ast import CAbstractSyntaxTree, CKind
from clang_parser import build_clang_args, parse_header
from codegen import CSharpCodeGenerator
from config import CodeGeneratorOptions, IgnoreRules, MappingConfiguration, TypeAlias
from diagnostics import BindgenError, DiagnosticsSink, ValidationError
from extractor import CExtractor
from mapper import CSharpMapper


def host_bitness() -> int:
    return 64 if sys.maxsize > 2 ** 32 else 32


# --- Pipeline runs ---

def extract_ast(header_path: str, diagnostics: DiagnosticsSink, bitness: Optional[int] = None,
                include_dirs: Sequence[str] = (), defines: Sequence[str] = (), extra_args: Sequence[str] = (),
                ignore_files: Sequence[str] = (), strict: bool = False, verbose: bool = False) -> CAbstractSyntaxTree:
    """Parses a header and extracts its C abstract syntax tree."""
    bitness = bitness or host_bitness()
    clang_args = build_clang_args(bitness, include_dirs, defines, extra_args)
    parsed = parse_header(header_path, clang_args, bitness, diagnostics)
    extractor = CExtractor(diagnostics, IgnoreRules(tuple(ignore_files)), strict=strict, verbose=verbose)
    return extractor.extract(parsed)


def generate_csharp(ast: CAbstractSyntaxTree, config: MappingConfiguration, options: CodeGeneratorOptions,
                    diagnostics: DiagnosticsSink, verbose: bool = False) -> str:
    """Maps a C abstract syntax tree to C# and renders it."""
    target = CSharpMapper(config, diagnostics, verbose=verbose).map(ast)
    return CSharpCodeGenerator(options).generate(target)


# --- Reporting ---

def print_summary(ast: CAbstractSyntaxTree):
    def count(kind: CKind) -> int:
        return len(ast.of_kind(kind))

    print("\n--- Parsing Summary ---")
    print(f"Records: {count(CKind.RECORD)}, Enums: {count(CKind.ENUM)}, Opaque types: {count(CKind.OPAQUE_TYPE)}")
    print(f"Functions: {count(CKind.FUNCTION)}, Variables: {count(CKind.VARIABLE)}, "
          f"Macros: {count(CKind.MACRO_DEFINITION)}, Typedefs: {count(CKind.TYPEDEF)}")
    print("-----------------------")


def report_diagnostics(diagnostics: DiagnosticsSink):
    if not len(diagnostics):
        return
    print("Diagnostics:", file=sys.stderr)
    for diagnostic in diagnostics.all():
        print(f"\t{diagnostic}", file=sys.stderr)


def parse_alias(text: str) -> TypeAlias:
    source, sep, target = text.partition("=")
    if not sep or not source.strip() or not target.strip():
        raise ValidationError(f"Invalid alias `{text}`, expected FROM=TO.")
    return TypeAlias(source.strip(), target.strip())


def default_class_name(library_name: str) -> str:
    name = re.sub(r"\W+", "_", os.path.basename(library_name)) or "Bindings"
    if name[0].isdigit():
        name = f"_{name}"
    return name[0].upper() + name[1:]


def _finish(diagnostics: DiagnosticsSink, what: str, output: str) -> int:
    report_diagnostics(diagnostics)
    if diagnostics.has_errors:
        print(f"Failed to generate {what}: errors were reported, nothing was written.", file=sys.stderr)
        return 1
    print(f"\nSuccessfully generated {what} at: {os.path.abspath(output)}")
    return 0


# --- Commands ---

def run_ast(args: argparse.Namespace, extra_args: List[str]) -> int:
    diagnostics = DiagnosticsSink()
    try:
        ast = extract_ast(
            args.header, diagnostics,
            bitness=args.bitness,
            include_dirs=args.include_dirs,
            defines=args.defines,
            extra_args=extra_args,
            ignore_files=args.ignore_files,
            strict=args.strict,
            verbose=args.verbose,
        )
        print_summary(ast)
        if not diagnostics.has_errors:
            write_ast(ast, args.output)
    except BindgenError as e:
        report_diagnostics(diagnostics)
        print(f"An error occurred: {e}", file=sys.stderr)
        return 1

    return _finish(diagnostics, "abstract syntax tree", args.output)


def run_cs(args: argparse.Namespace) -> int:
    diagnostics = DiagnosticsSink()
    try:
        ast = read_ast(args.document)
        class_name = args.class_name
        if args.config:
            config = MappingConfiguration.load(args.config, class_name=class_name, bitness=args.bitness)
        else:
            config = MappingConfiguration(class_name=class_name or default_class_name(args.library_name),
                                          bitness=args.bitness)
        config = config.with_extra(aliases=[parse_alias(a) for a in args.aliases],
                                   ignored_type_names=args.ignored_types)
        options = CodeGeneratorOptions(library_name=args.library_name, namespace=args.namespace,
                                       header_name=ast.file_name)
        code = generate_csharp(ast, config, options, diagnostics, verbose=args.verbose)
        if not diagnostics.has_errors:
            write_text_atomic(args.output, code)
    except BindgenError as e:
        report_diagnostics(diagnostics)
        print(f"An error occurred: {e}", file=sys.stderr)
        return 1

    return _finish(diagnostics, "C# bindings", args.output)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sharpbindgen",
        description="Generate C# platform invoke bindings from a C header file.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ast_parser = commands.add_parser(
        "ast", help="Extract the C abstract syntax tree of a header into a JSON document.",
        description="Arguments after `--` are passed to clang unchanged.",
    )
    ast_parser.add_argument("header", help="Path to the C header file to parse.")
    ast_parser.add_argument(
        "-o", "--output", default="ast.json",
        help="Path to the output document (default: ast.json)."
    )
    ast_parser.add_argument(
        "-I", dest="include_dirs", action="append", default=[],
        help="Add a directory to the Clang include path (e.g., -I/usr/include)."
    )
    ast_parser.add_argument(
        "-D", dest="defines", action="append", default=[],
        help="Define a macro for the Clang preprocessor (e.g., -DFOO=1)."
    )
    ast_parser.add_argument(
        "--bitness", type=int, choices=(32, 64), default=None,
        help="Target pointer width in bits (default: the host's)."
    )
    ast_parser.add_argument(
        "--ignore-file", dest="ignore_files", action="append", default=[],
        help="Exclude declarations located in this file (path or glob); repeatable."
    )
    ast_parser.add_argument(
        "--strict", action="store_true",
        help="Abort on the first unresolved type instead of skipping the declaration."
    )
    ast_parser.add_argument("-v", "--verbose", action="store_true", help="Print debug output.")

    cs_parser = commands.add_parser("cs", help="Generate C# bindings from an abstract syntax tree document.")
    cs_parser.add_argument("document", help="Path to the abstract syntax tree document.")
    cs_parser.add_argument(
        "-o", "--output", default="Bindings.cs",
        help="Path to the output C# file (default: Bindings.cs)."
    )
    cs_parser.add_argument("-l", "--library-name", required=True, help="Name of the native library to import from.")
    cs_parser.add_argument("-c", "--class-name", default=None, help="Name of the static class holding the bindings.")
    cs_parser.add_argument("-n", "--namespace", default=None, help="File scoped namespace of the bindings.")
    cs_parser.add_argument("--config", default=None, help="JSON mapping configuration file.")
    cs_parser.add_argument(
        "--alias", dest="aliases", action="append", default=[],
        help="Map the C type FROM to the C# type TO (FROM=TO); repeatable."
    )
    cs_parser.add_argument(
        "--ignore-type", dest="ignored_types", action="append", default=[],
        help="Drop the named type from the output; repeatable."
    )
    cs_parser.add_argument(
        "--bitness", type=int, choices=(32, 64), default=None,
        help="Target pointer width in bits (default: the document's)."
    )
    cs_parser.add_argument("-v", "--verbose", action="store_true", help="Print debug output.")
    return parser


# --- Main Execution ---
def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line interface for the binding generator."""
    argv = list(sys.argv[1:] if argv is None else argv)
    extra_args: List[str] = []
    if "--" in argv:
        split = argv.index("--")
        argv, extra_args = argv[:split], argv[split + 1:]

    args = build_parser().parse_args(argv)
    if args.command == "ast":
        return run_ast(args, extra_args)
    return run_cs(args)


if __name__ == "__main__":
    sys.exit(main())
