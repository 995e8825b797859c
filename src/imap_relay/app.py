# =============================================================================
# imap-relay Main Application
# =============================================================================
# Process startup and shutdown. Everything interesting happens in the sync
# package; this module only wires it together:
#
#   1. Parse the command line (one positional argument: the config file)
#   2. Configure logging
#   3. Load the configuration (errors here abort the whole process)
#   4. Obtain Gmail credentials, running the consent flow if needed
#   5. Start one relay task per account and wait for SIGINT/SIGTERM
# =============================================================================

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import httpx

from imap_relay import __app_name__, __version__
from imap_relay.config import Config, ConfigError
from imap_relay.gmail import (
    ClientSecret,
    GmailImporter,
    OAuthError,
    TokenProvider,
    TokenSet,
    authorize_interactive,
)
from imap_relay.sync import Supervisor

logger = logging.getLogger(__name__)


# =============================================================================
# Startup
# =============================================================================

async def load_token_provider(config: Config, http: httpx.AsyncClient) -> TokenProvider:
    """
    Build the shared token provider, authorizing interactively on first run.

    New tokens are written back to the config file.

    Raises:
        OAuthError: If the client secret is unusable or authorization fails.
    """
    secret = ClientSecret.from_dict(config.secrets)

    def persist(tokens: TokenSet) -> None:
        config.save_tokens(tokens.to_dict())

    if config.tokens:
        tokens = TokenSet.from_dict(config.tokens)
    else:
        logger.info("No stored Gmail tokens, starting authorization")
        tokens = await authorize_interactive(secret, http)
        persist(tokens)

    return TokenProvider(secret, tokens, http=http, on_refresh=persist)


async def run(config: Config) -> int:
    """
    Relay mail until the process is told to stop.

    Returns:
        Exit code.
    """
    async with httpx.AsyncClient(timeout=GmailImporter.TIMEOUT) as http:
        try:
            tokens = await load_token_provider(config, http)
        except OAuthError as e:
            logger.error(f"Unable to obtain Gmail credentials: {e}")
            return 1

        importer = GmailImporter(tokens, http=http)
        supervisor = Supervisor(
            config.accounts,
            importer,
            labels=config.labels,
            idle_timeout=config.general.idle_timeout,
            restart_delay=config.general.restart_delay,
        )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        await supervisor.start()
        logger.info("Startup complete; waiting for mail")

        try:
            await stop.wait()
        finally:
            await supervisor.stop()

    logger.info("Shut down")
    return 0


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="Relay mail from IMAP mailboxes into Gmail as it arrives",
    )

    parser.add_argument(
        "config",
        type=Path,
        help="Path to the TOML config file",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    return parser.parse_args(argv)


def configure_logging(debug: bool = False) -> None:
    """Send log records to stderr with timestamps."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    if not debug:
        # aioimaplib logs every command at INFO
        logging.getLogger("aioimaplib").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for imap-relay.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)
    configure_logging(args.debug)

    try:
        config = Config.load(args.config)
    except ConfigError as e:
        logger.error(f"Failed to load config file: {e}")
        return 1

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
