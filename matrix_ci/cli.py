import sys
from pathlib import Path

import click
from rich import print as rprint
from rich.table import Table

from matrix_ci import platforms as plat
from matrix_ci.artifacts import Artifacts
from matrix_ci.branch import get_branch_information
from matrix_ci.config import const
from matrix_ci.engine import RunContext, execute
from matrix_ci.exceptions import JobsFailed, PreTestCheckFailed
from matrix_ci.executors import Docker, Shell
from matrix_ci.images import ImageCache, Registry
from matrix_ci.jobs import RunMode
from matrix_ci.pipeline import Pipeline, gen_dockerfile_builder_jobs
from matrix_ci.remotes import Email, Github
from matrix_ci.repos import Git

__MAX_WIDTH__ = 75


def tell(msg, detail=""):
    "Inform a user about something"
    FIRST_COL = 30
    SECOND_COL = __MAX_WIDTH__ - FIRST_COL
    msg = msg + (" " * FIRST_COL)
    detail = str(detail) + (" " * SECOND_COL)
    lines = [
        msg[:FIRST_COL],
        "|" if msg.strip() else "",
        detail[:SECOND_COL],
    ]
    print(" ".join(lines)[:__MAX_WIDTH__], "┃")


def _images(overwrite: bool = False) -> ImageCache:
    return ImageCache(
        registry=Registry(const=const),
        dockerfiles=const.dockerfiles_dir,
        overwrite=overwrite,
    )


def _executors(workspaces: Path):
    return {
        "container-host": Docker(workspaces),
        "freebsd": Shell(workspaces),
        "windows": Shell(workspaces, windows=True),
    }


# ---------------
# Cli subcommands
# ---------------


@click.group()
@click.option(
    "--workspaces",
    default="workspaces",
    type=click.Path(file_okay=False, path_type=Path),
    help="Where jobs get their private directories.",
)
@click.pass_context
def cli(ctx, workspaces):
    "Matrix CI"
    ctx.obj = {"workspaces": workspaces}


@cli.command()
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in RunMode]),
    required=True,
    help="Kind of run.",
)
@click.option("--label-prefix", default="", help="Prepended to every job name.")
@click.option("--name", default=None, help="Name of the run in the summary.")
@click.option(
    "--overwrite-images", is_flag=True, help="Rebuild images even if they exist."
)
@click.pass_context
def run(ctx, mode, label_prefix, name, overwrite_images):
    """
    Test the branch checked out in the current directory.
    """
    repo = Git.from_env()
    tell("Run", f"{mode} sha: {repo.sha[:10]}")
    pipeline = Pipeline(
        const=const,
        repo=repo,
        remote=Github.from_env(repo=repo, const=const),
        executors=_executors(ctx.obj["workspaces"]),
        images=_images(overwrite_images),
        artifacts=Artifacts(const.artifacts_dir),
        email=Email.from_env(const=const),
        label_prefix=label_prefix,
        name=name,
    )
    try:
        pipeline.run(RunMode.parse(mode))
    except (JobsFailed, PreTestCheckFailed) as e:
        tell("Failed", e)
        sys.exit(1)
    finally:
        if pipeline.report is not None:
            rprint(pipeline.reporter.render(pipeline.report))
    tell("Passed")


@cli.command()
@click.option("--overwrite", is_flag=True, help="Rebuild images even if they exist.")
def build_images(overwrite):
    """
    Make sure every Linux platform has an up to date image in the registry.
    """
    images = _images(overwrite)
    try:
        execute(RunContext(), gen_dockerfile_builder_jobs(images))
    except JobsFailed as e:
        tell("Failed", e)
        sys.exit(1)
    for platform in plat.LINUX_PLATFORMS:
        tell(platform, images.image(platform))


@cli.command()
@click.pass_context
def list_components(ctx):
    """
    Show which platform would run each all.sh component of the current
    branch.
    """
    images = _images()
    for platform in plat.LINUX_PLATFORMS:
        images.resolve_or_build(platform)
    info = get_branch_information(
        repo=Git.from_env(),
        executor=Docker(ctx.obj["workspaces"]),
        images=images,
    )
    table = Table(title=repr(info))
    table.add_column("Component")
    table.add_column("Platform")
    for component, platform in sorted(info.all_all_sh_components.items()):
        table.add_row(component, platform or "[red]none[/red]")
    rprint(table)


if __name__ == "__main__":
    cli()  # pylint: disable=no-value-for-parameter
