"""
Entry point for the chat client.
"""
from .cli import app


def main():
    """Launch the terminal chat client.

    Delegates argument parsing to the typer application, so
    ``python -m chatrelay.client run --name alice`` starts a session.
    """
    app()


if __name__ == "__main__":
    main()
