"""FastMCP Google Calendar Server.

An MCP server exposing Google Calendar tools (events, free/busy, calendars,
colors) backed by a saved delegated Google token.
"""

import argparse

from dotenv import load_dotenv

# Export .env before anything reads the process environment
load_dotenv()

# Setup enhanced logging early so every module logs through it
from config.enhanced_logging import setup_logger

logger = setup_logger()

from fastmcp import FastMCP

from config.settings import settings
from gcalendar.calendar_tools import setup_calendar_tools

mcp = FastMCP(name=settings.server_name, version=settings.server_version)

setup_calendar_tools(mcp)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Google Calendar MCP server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default=settings.transport,
        help="Transport to serve over (default: %(default)s)",
    )
    parser.add_argument("--host", default=settings.server_host, help="Host for the http transport")
    parser.add_argument("--port", type=int, default=settings.server_port, help="Port for the http transport")
    parser.add_argument(
        "--credentials-file",
        default=None,
        help="Path to the OAuth client keys file (overrides GOOGLE_OAUTH_CREDENTIALS_FILE)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for the server."""
    args = parse_args(argv)
    if args.credentials_file:
        settings.google_oauth_credentials_file = args.credentials_file

    logger.info(f"Starting {settings.server_name} v{settings.server_version}")
    logger.info(f"Token file: {settings.token_file}")

    try:
        if args.transport == "http":
            logger.info(f"🌐 Starting server on http://{args.host}:{args.port}")
            mcp.run(transport="http", host=args.host, port=args.port)
        else:
            # stdout carries the protocol; logs stay on stderr
            logger.info("Starting server over stdio")
            mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
