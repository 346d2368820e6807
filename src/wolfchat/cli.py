"""Command-line interface for wolfchat."""

from __future__ import annotations

import asyncio
import logging

import click

logger = logging.getLogger(__name__)


@click.group()
@click.option("--log-level", default="WARNING", help="Logging level.")
def cli(log_level: str) -> None:
    """wolfchat -- text-chat Werewolf host."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


# ------------------------------------------------------------------
# wolfchat simulate
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=False),
    help="Path to game config YAML.",
)
@click.option("--seed", type=int, default=None, help="Seed for roles and players.")
@click.option(
    "--speed",
    type=float,
    default=100.0,
    show_default=True,
    help="Divide every phase duration by this factor.",
)
@click.option("--verbose", is_flag=True, help="Enable verbose output.")
def simulate(
    config_path: str | None,
    seed: int | None,
    speed: float,
    verbose: bool,
) -> None:
    """Play one game locally with random players."""
    from wolfchat.config.loader import load_config, speed_up
    from wolfchat.simulation import Simulation

    if verbose:
        logging.getLogger("wolfchat").setLevel(logging.DEBUG)
    if speed <= 0:
        raise click.BadParameter("must be positive", param_hint="--speed")

    config = speed_up(load_config(config_path), speed, seed)

    click.echo(click.style("=== wolfchat: Starting Simulation ===", fg="cyan", bold=True))
    click.echo(f"  Config: {config.game_name}")
    click.echo(f"  Players: {config.num_players}")
    click.echo(f"  Speed: x{speed:g}")
    click.echo()

    result = asyncio.run(Simulation(config, seed=seed, echo=click.echo).run())

    click.echo()
    click.echo(click.style("=== Game Result ===", fg="green", bold=True))
    winner = result.winning_team or "nobody"
    click.echo(f"  Winner: {click.style(winner, fg='bright_green', bold=True)}")
    click.echo(f"  Reason: {result.reason}")
    click.echo(f"  Days: {result.days}")
    click.echo(f"  Duration: {result.duration:.1f}s")
    click.echo()
    click.echo(click.style("Roles:", fg="cyan"))
    for nickname, role in result.roles.items():
        click.echo(f"  {nickname}: {role}")


# ------------------------------------------------------------------
# wolfchat show-config
# ------------------------------------------------------------------


@cli.command("show-config")
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=False),
    help="Path to game config YAML.",
)
def show_config(config_path: str | None) -> None:
    """Print the effective configuration as YAML."""
    from wolfchat.config.loader import dump_config, load_config

    click.echo(dump_config(load_config(config_path)), nl=False)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
