from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple


# --- Tokens ---

@dataclass
class Token:
    kind: str
    text: str


_TWO_CHAR_OPS = ("<<", ">>", "<=", ">=", "==", "!=", "&&", "||")


def _scan_quoted(src: str, i: int, quote: str) -> int:
    n = len(src)
    i += 1
    while i < n:
        if src[i] == '\\':
            i += 2
            continue
        if src[i] == quote:
            return i + 1
        i += 1
    return n


def tokenize(src: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    n = len(src)
    while i < n:
        ch = src[i]
        # Skip whitespace
        if ch.isspace():
            i += 1
            continue
        # Identifiers
        if ch.isalpha() or ch == '_':
            start = i
            i += 1
            while i < n and (src[i].isalnum() or src[i] == '_'):
                i += 1
            tokens.append(Token('ident', src[start:i]))
            continue
        # Numbers, keeping suffixes and exponents in the spelling
        if ch.isdigit() or (ch == '.' and i + 1 < n and src[i + 1].isdigit()):
            start = i
            i += 1
            while i < n and (src[i].isalnum() or src[i] == '.' or
                             (src[i] in '+-' and src[i - 1] in 'eEpP' and not src[start:i].lower().startswith('0x'))):
                i += 1
            tokens.append(Token('number', src[start:i]))
            continue
        if ch == '"':
            end = _scan_quoted(src, i, '"')
            tokens.append(Token('string', src[i:end]))
            i = end
            continue
        if ch == "'":
            end = _scan_quoted(src, i, "'")
            tokens.append(Token('char', src[i:end]))
            i = end
            continue
        # Two-char operators
        if i + 1 < n and src[i:i+2] in _TWO_CHAR_OPS:
            tokens.append(Token('op', src[i:i+2]))
            i += 2
            continue
        if ch in '()':
            tokens.append(Token('paren', ch))
        elif ch == ',':
            tokens.append(Token('comma', ch))
        else:
            tokens.append(Token('op', ch))
        i += 1
    return tokens


# --- AST Nodes ---

class Expr: ...

@dataclass
class Number(Expr):
    text: str

@dataclass
class String(Expr):
    text: str

@dataclass
class Char(Expr):
    text: str

@dataclass
class Identifier(Expr):
    name: str

@dataclass
class Unary(Expr):
    op: str
    expr: Expr

@dataclass
class Binary(Expr):
    left: Expr
    op: str
    right: Expr

@dataclass
class Call(Expr):
    func: Identifier
    args: List[Expr]


# --- Parser ---

_PRECEDENCE = {
    '||': 1,
    '&&': 2,
    '|': 3,
    '^': 4,
    '&': 5,
    '==': 6, '!=': 6,
    '<': 7, '>': 7, '<=': 7, '>=': 7,
    '<<': 8, '>>': 8,
    '+': 9, '-': 9,
    '*': 10, '/': 10, '%': 10,
}

_UNARY_OPS = ('-', '+', '~', '!')


class Parser:
    """Precedence climbing over the C operators a constant macro may use."""

    def __init__(self, tokens: List[Token]):
        self.toks = tokens
        self.i = 0

    def _peek(self, k: int = 0) -> Optional[Token]:
        j = self.i + k
        return self.toks[j] if 0 <= j < len(self.toks) else None

    def _eat(self, kind: Optional[str] = None, text: Optional[str] = None) -> Optional[Token]:
        t = self._peek()
        if not t:
            return None
        if kind is not None and t.kind != kind:
            return None
        if text is not None and t.text != text:
            return None
        self.i += 1
        return t

    def parse(self) -> Optional[Expr]:
        expr = self._parse_expr()
        # Anything left over (casts, statements, token pasting) is not an expression we understand
        if expr is None or self.i != len(self.toks):
            return None
        return expr

    def _parse_primary(self) -> Optional[Expr]:
        tok = self._peek()
        if tok is None:
            return None
        if tok.kind == 'number':
            self._eat()
            return Number(tok.text)
        if tok.kind == 'string':
            # Adjacent literals concatenate
            parts = []
            while self._peek() is not None and self._peek().kind == 'string':
                parts.append(self._eat().text[1:-1])
            return String('"' + ''.join(parts) + '"')
        if tok.kind == 'char':
            self._eat()
            return Char(tok.text)
        if tok.kind == 'ident':
            ident = Identifier(self._eat().text)
            if self._eat('paren', '('):
                args: List[Expr] = []
                if not self._eat('paren', ')'):
                    while True:
                        arg = self._parse_expr()
                        if arg is None:
                            return None
                        args.append(arg)
                        if self._eat('paren', ')'):
                            break
                        if not self._eat('comma', ','):
                            return None
                return Call(ident, args)
            return ident
        if tok.kind == 'paren' and tok.text == '(':
            self._eat()
            inner = self._parse_expr()
            if inner is None or not self._eat('paren', ')'):
                return None
            return inner
        if tok.kind == 'op' and tok.text in _UNARY_OPS:
            self._eat()
            operand = self._parse_primary()
            return Unary(tok.text, operand) if operand is not None else None
        return None

    def _parse_expr(self, min_prec: int = 0) -> Optional[Expr]:
        left = self._parse_primary()
        if left is None:
            return None
        while True:
            op_tok = self._peek()
            if op_tok is None or op_tok.kind != 'op' or op_tok.text not in _PRECEDENCE:
                break
            prec = _PRECEDENCE[op_tok.text]
            if prec < min_prec:
                break
            self._eat()
            right = self._parse_expr(prec + 1)
            if right is None:
                return None
            left = Binary(left, op_tok.text, right)
        return left


def parse_macro_replacement(text: str) -> Optional[Expr]:
    toks = tokenize(text)
    if not toks:
        return None
    p = Parser(toks)
    return p.parse()


# --- Classification ---

def identifiers(e: Expr) -> List[str]:
    if isinstance(e, Identifier):
        return [e.name]
    if isinstance(e, Unary):
        return identifiers(e.expr)
    if isinstance(e, Binary):
        return identifiers(e.left) + identifiers(e.right)
    if isinstance(e, Call):
        return [e.func.name] + [n for a in e.args for n in identifiers(a)]
    return []


def _contains_call(e: Expr) -> bool:
    if isinstance(e, Call):
        return True
    if isinstance(e, Unary):
        return _contains_call(e.expr)
    if isinstance(e, Binary):
        return _contains_call(e.left) or _contains_call(e.right)
    return False


def _contains_string(e: Expr) -> bool:
    if isinstance(e, String):
        return True
    if isinstance(e, Unary):
        return _contains_string(e.expr)
    if isinstance(e, Binary):
        return _contains_string(e.left) or _contains_string(e.right)
    return False


def check_constant(e: Optional[Expr], known_constants: Iterable[str]) -> Tuple[bool, str]:
    """Whether `e` is a literal expression; identifiers must name known constants."""
    if e is None:
        return False, "the replacement is not a literal expression"
    if _contains_call(e):
        return False, "the replacement calls a function or macro"
    if _contains_string(e) and not isinstance(e, String):
        return False, "the replacement mixes string literals with operators"
    known: Set[str] = set(known_constants)
    unknown = [name for name in identifiers(e) if name not in known]
    if unknown:
        return False, f"the replacement references '{unknown[0]}' which is not a constant"
    return True, ""


# --- Rendering to C# ---

_INT_SUFFIX = re.compile(r'[uUlL]+$')


def _csharp_number(num: str, integer_suffix: bool = True) -> str:
    lower = num.lower()
    is_radix = lower.startswith('0x') or lower.startswith('0b')
    if not is_radix and ('.' in num or 'e' in lower or lower.endswith('f')):
        # C# has no long double
        return num[:-1] if lower.endswith('l') else num
    match = _INT_SUFFIX.search(num)
    suffix = match.group(0).lower() if match else ''
    digits = num[:len(num) - len(suffix)]
    if not is_radix and len(digits) > 1 and digits.startswith('0') and digits.isdigit():
        # C# has no octal literals
        digits = str(int(digits, 8))
    if not integer_suffix or not suffix:
        return digits
    if 'u' in suffix:
        return digits + ('UL' if 'l' in suffix else 'U')
    return digits + 'L'


def render_expr(e: Expr) -> str:
    if isinstance(e, Number):
        return _csharp_number(e.text)
    if isinstance(e, (String, Char)):
        return e.text
    if isinstance(e, Identifier):
        return e.name
    if isinstance(e, Unary):
        return f"{e.op}{render_expr(e.expr)}"
    if isinstance(e, Binary):
        left = render_expr(e.left)
        right = render_expr(e.right)
        return f"({left}{e.op}{right})"
    if isinstance(e, Call):
        args = ','.join(render_expr(a) for a in e.args)
        return f"{e.func.name}({args})"
    return "<unknown>"


_FLOAT_TYPES = ("float", "double")


def render_constant(e: Expr, cs_type: str) -> str:
    """A C# constant initializer of type `cs_type` for the macro expression `e`."""
    if isinstance(e, (String, Char)) or cs_type == "string":
        return render_expr(e)
    if isinstance(e, Number):
        # The typing unit typed the macro from this very literal, so it already fits
        return _csharp_number(e.text, integer_suffix=False)
    if cs_type in _FLOAT_TYPES:
        return f"({cs_type})({render_expr(e)})"
    return f"unchecked(({cs_type})({render_expr(e)}))"
