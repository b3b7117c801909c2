import sys

import click

from lorchestre.cli import cli
from lorchestre.common import LorchestreExpectedError


def main() -> None:
    try:
        cli()
    except LorchestreExpectedError as e:
        click.secho(f"{e.__class__.__module__}.{e.__class__.__name__}: ", fg="red", nl=False)
        click.secho(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
