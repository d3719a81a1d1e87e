"""Module entrypoint for ``python -m accounts_db`` CLI usage."""

from accounts_db.cli import app as cli_app


def main() -> None:
    cli_app()

if __name__ == "__main__":
    main()
