"""Module entrypoint for ``python -m access_engine``."""

from .cli import app as cli_app


def main() -> None:
    cli_app()


if __name__ == "__main__":
    main()
