"""Top-level package for MoodleBag."""

__author__ = """Matthew Leingang"""
__email__ = 'leingang@nyu.edu'

import typer

app = typer.Typer()

# Import submodules at the end to register their commands
from moodlebag import (  # noqa: E402
    moodle,  # noqa: F401
)

if __name__ == "__main__":
    app()
