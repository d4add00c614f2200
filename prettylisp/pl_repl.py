import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from prettylisp.pl_runtime import ScriptRunner, ExecutionResult
from prettylisp.pl_printer import Printer
from prettylisp.pl_serialize import serialize
from prettylisp.pl_transformer import parse, tokenize
from prettylisp.pl_datatypes import ParseError

BANNER = "PrettyLisp REPL v0.1"


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


async def read_lines() -> str:
    """Reads one REPL input; a line ending in a backslash continues on the next line."""
    raw = await ainput(">> ")
    if raw == "":
        raise EOFError
    text = raw.rstrip("\r\n")
    parts = []
    while text.endswith("\\"):
        parts.append(text[:-1])
        raw = await ainput(".. ")
        if raw == "":
            break
        text = raw.rstrip("\r\n")
    else:
        parts.append(text)
    return "\n".join(parts)


def _dump_debug(source: str):
    """Shows the token stream and AST of `source`; parse errors are left to the runner."""
    try:
        tokens = tokenize(source)
        program = parse(source)
    except ParseError:
        return
    print("Tokens:")
    print(" ".join(f"{t.type}:{t}" for t in tokens))
    print("AST:")
    print(serialize(program, fmt='yaml'), end="")


def _report(result: ExecutionResult, printer: Printer):
    # Statements without a value echo as null.
    for value in result.values:
        print(printer.pformat(value))
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)


def run_script_file(file_path: str, debug: bool = False, dump_ast: bool = False):
    """Run a PrettyLisp script file non-interactively and exit with appropriate status."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)

    if dump_ast:
        try:
            print(serialize(parse(source), fmt='yaml'), end="")
        except ParseError as e:
            print(f"Error on line {e.line}: ParseError: {e.message}", file=sys.stderr)
            raise SystemExit(1)
        return

    runner = ScriptRunner(debug=debug)
    result = runner.handle_script(source)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)


async def main(argv: Optional[List[str]] = None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    arg_parser = argparse.ArgumentParser(prog="prettylisp")
    arg_parser.add_argument("file", nargs="?", help="script to run")
    arg_parser.add_argument("--debug", action="store_true", help="trace evaluation to stderr")
    arg_parser.add_argument("--ast", action="store_true", help="print the parsed program as YAML")
    args = arg_parser.parse_args(sys.argv[1:] if argv is None else argv)

    if args.file:
        run_script_file(args.file, debug=args.debug, dump_ast=args.ast)
        return

    print(BANNER)
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner(debug=args.debug)
    printer = Printer()

    while True:
        try:
            source = await read_lines()
            line = source.strip()

            if not line:
                continue
            if line == "exit":
                break
            if line == "reset":
                runner.reset()
                print("Interpreter reset.")
                continue
            if line == "debug":
                runner.debug = not runner.debug
                print("Debug Mode Enabled" if runner.debug else "Debug Mode Disabled")
                continue
            if line == "file":
                path = (await ainput("file: ")).strip()
                try:
                    source = Path(path).read_text(encoding="utf-8")
                except OSError as e:
                    print(f"Error: cannot read {path}: {e.strerror}", file=sys.stderr)
                    continue

            if runner.debug:
                _dump_debug(source)

            _report(runner.handle_script(source), printer)

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")


if __name__ == "__main__":
    cli()
