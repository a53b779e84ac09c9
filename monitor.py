#!/usr/bin/env python3
"""
Drive Watch - Monitor Google Drive documents and push their content to
subscribers as it changes.

Commands:
  serve     Run the webhook / WebSocket server
  sign-in   Authorize a Google account and save its token
"""

import argparse
import os
import sys
from pathlib import Path

# Load .env file if it exists
env_path = Path(__file__).parent / ".env"
if env_path.exists():
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, value = line.split("=", 1)
                os.environ.setdefault(key.strip(), value.strip())

import uvicorn

from drivewatch.config import MonitorSettings
from drivewatch.drive import FileCredentialProvider
from drivewatch.errors import AuthError
from drivewatch.log import setup_logging
from drivewatch.server import create_app_from_settings

CONFIG_PATH = Path(__file__).parent / "drivewatch.json"


def serve(settings: MonitorSettings):
    """Run the HTTP server until interrupted."""
    try:
        app = create_app_from_settings(settings)
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def sign_in(settings: MonitorSettings):
    """Run the browser OAuth flow and store the token."""
    provider = FileCredentialProvider(Path(settings.token_path))
    try:
        provider.sign_in(Path(settings.client_secrets_path))
    except AuthError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    print(f"Token saved to {provider.token_path}")


def main():
    parser = argparse.ArgumentParser(
        description="Monitor Google Drive files and folders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python monitor.py sign-in    # One-time: authorize and save token.json
  python monitor.py serve      # Start receiving Drive notifications

BACKEND_URL must be a public HTTPS URL Drive can reach.
"""
    )
    parser.add_argument("command", choices=["serve", "sign-in"])
    parser.add_argument("--config", type=Path, default=CONFIG_PATH,
                        help="JSON settings file (environment overrides it)")
    args = parser.parse_args()

    settings = MonitorSettings.load(args.config)
    setup_logging(settings.log_level)

    if args.command == "sign-in":
        sign_in(settings)
    else:
        serve(settings)


if __name__ == "__main__":
    main()
