"""PrettyLisp: a small bracket-notation expression language with a tree-walking evaluator."""
from prettylisp.pl_datatypes import (
    PrettyLispError, NameNotFound, DuplicateDeclaration, ReadonlyViolation,
    TypeCoercion, ArityMismatch, UnexpectedReturn, IndexOutOfRange, ParseError,
)
from prettylisp.pl_interpreter import Evaluator
from prettylisp.pl_runtime import ScriptRunner, ExecutionResult, StdLib
from prettylisp.pl_transformer import parse, tokenize

__all__ = [
    "Evaluator", "ScriptRunner", "ExecutionResult", "StdLib", "parse", "tokenize",
    "PrettyLispError", "NameNotFound", "DuplicateDeclaration", "ReadonlyViolation",
    "TypeCoercion", "ArityMismatch", "UnexpectedReturn", "IndexOutOfRange", "ParseError",
]
