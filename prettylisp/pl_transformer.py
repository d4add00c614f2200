"""
Parses PrettyLisp source with lark and transforms the parse tree into the
AST defined in pl_datatypes.
"""
from functools import lru_cache
from pathlib import Path
from typing import List

from lark import Lark, Transformer, Token
from lark.exceptions import UnexpectedInput, UnexpectedCharacters, UnexpectedEOF, VisitError

from prettylisp.pl_datatypes import (
    Program, Array, Expr, Number, String, Variable, Call, ParseError,
)

GRAMMAR_PATH = Path(__file__).parent / "grammar" / "prettylisp.lark"

_STRING_ESCAPES = {
    "0": "\0",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "!": "\a",
}


def unescape(body: str) -> str:
    """Resolves backslash escapes; an unknown escape stands for the escaped character."""
    out = []
    chars = iter(body)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append(_STRING_ESCAPES.get(nxt, nxt))
        else:
            out.append(ch)
    return "".join(out)


class PrettyLispTransformer(Transformer):
    """Builds AST nodes from the lark parse tree. Every node takes the line of its first token."""

    def start(self, items):
        line = items[0].line if items else 1
        return Program(items, line)

    def call(self, items):
        lpar, name, *args, _rpar = items
        return Call(str(name), args, lpar.line)

    def binop(self, items):
        langle, lhs, op, rhs, _rangle = items
        return Call(str(op), [lhs, rhs], langle.line)

    def implicit_binop(self, items):
        langle, lhs, num, _rangle = items
        rhs = self._number(num)
        # `<x -1>` adds a signed literal, `<x 2>` scales a variable.
        if num[0] in "+-":
            return Call("+", [lhs, rhs], langle.line)
        if isinstance(lhs, Variable):
            return Call("*", [lhs, rhs], langle.line)
        raise ParseError("Invalid binary operation", langle.line, langle.column)

    def array(self, items):
        lsqb, *nodes, _rsqb = items
        return Array(nodes, lsqb.line)

    def block(self, items):
        lbrace, *nodes, _rbrace = items
        return Expr(nodes, lbrace.line)

    def number(self, items):
        return self._number(items[0])

    def _number(self, tok: Token) -> Number:
        try:
            return Number(float(tok), tok.line)
        except ValueError:
            raise ParseError(f"Invalid number literal {str(tok)!r}", tok.line, tok.column)

    def char(self, items):
        tok = items[0]
        return Number(float(ord(tok[1])), tok.line)

    def string(self, items):
        tok = items[0]
        return String(unescape(tok[1:-1]), tok.line)

    def variable(self, items):
        name = items[0]
        return Variable(str(name), name.line)

    def name(self, items):
        # Keep the token so parents can read its line.
        return items[0]


@lru_cache(maxsize=1)
def get_parser() -> Lark:
    return Lark(GRAMMAR_PATH.read_text(encoding="utf-8"), parser="lalr", lexer="basic")


def _parse_error(e: UnexpectedInput, source: str) -> ParseError:
    line, column = getattr(e, "line", None), getattr(e, "column", None)
    if isinstance(e, UnexpectedEOF) or not isinstance(line, int) or line < 1:
        # lark reports end of input at line -1; point at the last line instead.
        lines = source.splitlines() or [""]
        line, column = len(lines), len(lines[-1]) + 1
        return ParseError("Unexpected end of input", line, column)
    if isinstance(e, UnexpectedCharacters):
        if e.char == '"':
            return ParseError("Unclosed string literal", line, column)
        return ParseError(f"Unexpected character {e.char!r}", line, column)
    token = getattr(e, "token", None)
    if token is not None and token.type == "$END":
        lines = source.splitlines() or [""]
        return ParseError("Unexpected end of input", len(lines), len(lines[-1]) + 1)
    return ParseError(f"Unexpected token {str(token)!r}", line, column)


def parse(source: str) -> Program:
    """Parses a whole source text into a Program node. Raises ParseError."""
    try:
        tree = get_parser().parse(source)
    except UnexpectedInput as e:
        raise _parse_error(e, source) from None
    try:
        return PrettyLispTransformer().transform(tree)
    except VisitError as e:
        raise e.orig_exc from None


def tokenize(source: str) -> List[Token]:
    """The token stream of `source`, comments and whitespace removed."""
    try:
        return list(get_parser().lex(source))
    except UnexpectedInput as e:
        raise _parse_error(e, source) from None
