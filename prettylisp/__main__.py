from prettylisp.pl_repl import cli

if __name__ == "__main__":
    cli()
