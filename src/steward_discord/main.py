"""CLI entrypoint for steward-discord."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterable

import click
import sentry_sdk
from loguru import logger

from steward_shared.database import create_engine, create_session_factory, init_db
from steward_shared.embeddings import OpenAIEmbedder
from steward_shared.llm_client import ClaudeClient

from .agent import ResponseGenerator
from .batcher import EmbeddingBatcher
from .bot import StewardDiscordClient
from .classifier import IntentClassifier
from .commands import CommandRouter
from .config import BotConfig, ConfigError, load_bot_config
from .issues import DEV_PIPELINE_MAX_TURNS, DEV_TOOLS, DevPipeline, GitHubClient
from .message_handler import MessageHandler
from .persona import PersonaProfile
from .provider import ClaudeGenerationProvider
from .safety import SafetyFilter
from .store import Store
from .traits import TraitAccumulator
from .volunteer import VolunteerPolicy


def _format_collection(values: Iterable[str]) -> str:
    if not values:
        return "-"
    return ", ".join(sorted(values))


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--token",
    metavar="TOKEN",
    help="Discord bot token override (otherwise reads STEWARD_DISCORD_TOKEN or config.toml).",
)
@click.option("--guild", metavar="GUILD_ID", help="Only serve this guild.")
@click.option(
    "--channel",
    "channel_allowlist",
    multiple=True,
    metavar="CHANNEL_ID",
    help="Only reply in these channel IDs (messages everywhere are still recorded).",
)
@click.option("--database-url", metavar="URL", help="PostgreSQL URL override.")
@click.option("--model", metavar="MODEL", help="Model used for replies.")
@click.option(
    "--volunteer/--no-volunteer",
    "volunteer_flag",
    default=None,
    help="Allow joining conversations without being mentioned (default: enabled).",
)
@click.option(
    "--init-db",
    is_flag=True,
    help="Create tables directly instead of relying on Alembic migrations.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def cli(
    token: str | None,
    guild: str | None,
    channel_allowlist: tuple[str, ...],
    database_url: str | None,
    model: str | None,
    volunteer_flag: bool | None,
    init_db: bool,
    log_level: str,
):
    """Launch the steward Discord bot."""

    try:
        config = load_bot_config(
            token_override=token,
            guild_override=guild,
            database_override=database_url,
            model_override=model,
            allow_channels=channel_allowlist or None,
            volunteer_override=volunteer_flag,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    _configure_logging(log_level.upper())
    _configure_sentry(config)
    _display_config(config)

    try:
        asyncio.run(_run_bot(config, create_schema=init_db))
    except KeyboardInterrupt:
        click.echo("Stopping steward-discord...", err=True)


def _display_config(config: BotConfig) -> None:
    """Print a human-friendly configuration summary."""
    click.echo("Steward Discord configuration:")
    click.echo(f"  Model           : {config.model}")
    click.echo(f"  Timezone        : {config.timezone}")
    click.echo(f"  Guild           : {config.guild_id or '-'}")
    click.echo(f"  Reply channels  : {_format_collection(config.allowed_channels)}")
    click.echo(f"  Volunteer       : {'on' if config.volunteer_enabled else 'off'}")
    click.echo(f"  Advisory check  : {'on' if config.advisory_enabled else 'off'}")
    click.echo(f"  Embeddings      : {'on' if config.embeddings_enabled else 'off'}")
    click.echo(f"  Traits          : {'on' if config.traits_enabled else 'off'}")
    click.echo(f"  GitHub          : {config.github_repo if config.github_enabled else 'off'}")


def run() -> None:
    """Console script entrypoint."""
    cli(standalone_mode=True)


def _configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>"
        " | {message}",
    )
    logger.disable("httpx")


def _configure_sentry(config: BotConfig) -> None:
    if not config.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=config.sentry_dsn,
        environment=config.sentry_environment,
        traces_sample_rate=0.0,
    )
    logger.info("Sentry error reporting enabled ({})", config.sentry_environment)


async def _run_bot(config: BotConfig, *, create_schema: bool = False) -> None:
    engine = create_engine(config.database_url)
    if create_schema:
        await init_db(engine)
    store = Store(create_session_factory(engine))
    persona = PersonaProfile()

    provider = ClaudeGenerationProvider(
        model=config.model,
        cwd=config.work_dir,
        allowed_tools=config.allowed_tools,
        max_turns=config.max_turns,
        env=config.backend_env,
        include_partial_messages=config.include_partial_messages,
    )
    generator = ResponseGenerator(provider, store, persona, timezone=config.timezone)

    helper_client = ClaudeClient(config.classifier_model, env=config.backend_env)
    safety = SafetyFilter(helper_client if config.advisory_enabled else None)

    embedder = None
    if config.embeddings_enabled:
        embedder = OpenAIEmbedder(api_key=config.openai_api_key, model=config.embedding_model)
    batcher = EmbeddingBatcher(
        store,
        embedder,
        batch_size=config.embedding_batch_size,
        flush_interval=config.embedding_flush_interval,
    )

    traits = None
    if config.traits_enabled:
        traits = TraitAccumulator(
            store,
            ClaudeClient(config.trait_model, env=config.backend_env),
            threshold=config.trait_threshold,
        )

    github = None
    pipeline = None
    if config.github_enabled:
        github = GitHubClient(token=config.github_token, repo=config.github_repo)
        if config.github_repo_dir:
            dev_provider = ClaudeGenerationProvider(
                model=config.model,
                cwd=config.github_repo_dir,
                allowed_tools=DEV_TOOLS,
                max_turns=DEV_PIPELINE_MAX_TURNS,
                env=config.backend_env,
                include_partial_messages=False,
                permission_mode="acceptEdits",
            )
            pipeline = DevPipeline(
                github, dev_provider, config.github_repo_dir, base_branch=config.github_base_branch
            )

    commands = CommandRouter(
        generator,
        store,
        batcher=batcher,
        github=github,
        pipeline=pipeline,
        timezone=config.timezone,
        bot_name=persona.name,
    )
    handler = MessageHandler(
        store=store,
        generator=generator,
        safety=safety,
        commands=commands,
        volunteer=VolunteerPolicy(enabled=config.volunteer_enabled),
        batcher=batcher,
        traits=traits,
        classifier=IntentClassifier(helper_client),
        intro_channel=config.intro_channel,
        stream_min_chars=config.stream_min_chars,
        stream_edit_interval=config.stream_edit_interval,
        reply_channels=config.allowed_channels,
        role_tiers=config.role_tiers,
    )
    client = StewardDiscordClient(
        config=config,
        handler=handler,
        engine=engine,
        batcher=batcher,
        traits=traits,
        embedder=embedder,
        github=github,
    )

    try:
        await client.start(config.token)
    finally:
        if not client.is_closed():
            await client.close()
