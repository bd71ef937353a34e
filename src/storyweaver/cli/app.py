"""StoryWeaver CLI entry point."""

from typing import Annotated, Optional

import typer
from dotenv import load_dotenv

from storyweaver import __version__
from storyweaver.cli.align import align
from storyweaver.cli.cache import cache_app
from storyweaver.cli.languages import languages
from storyweaver.cli.play import play
from storyweaver.cli.voices import voices

app = typer.Typer(
    name="storyweaver",
    help="StoryWeaver — Play branching visual-novel stories with synchronized narration.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"storyweaver {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
) -> None:
    """StoryWeaver — Play branching visual-novel stories with synchronized narration."""
    # Load .env for ELEVENLABS_API_KEY; shell exports take precedence
    load_dotenv(override=False)


app.command("play")(play)
app.command("align")(align)
app.command("voices")(voices)
app.command("languages")(languages)
app.add_typer(cache_app, name="cache")
