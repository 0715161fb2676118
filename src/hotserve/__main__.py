"""Entry point for `hotserve` and `python -m hotserve`."""

from typer import Typer

from hotserve import __version__
from hotserve.cli.serve import serve
from hotserve.utils import console

app = Typer(name="hotserve", help="Development server for front-end builds", no_args_is_help=True)

app.command(name="serve", help="Start the development server")(serve)


@app.command(name="version", help="Show the hotserve version")
def version() -> None:
    console.print(f"hotserve {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
