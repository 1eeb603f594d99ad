# run.py
# Description: Entry point for the catalog sync service. `serve` runs the HTTP API under uvicorn,
# `prune` applies the sync-queue retention policy once and exits.
#
# Imports
import argparse
import sys
#
# 3rd-party Libraries
import uvicorn
from loguru import logger
#
# Local Imports
from hive_sync.Logging_Config import configure_logging
from hive_sync.Sync.Sync_Service import CatalogSyncService
from hive_sync.app import create_app
from hive_sync.config import ensure_default_config, get_setting, load_settings
#
#######################################################################################################################
#
# Functions:


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Hive catalog sync service")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the sync API")
    serve.add_argument("--host", type=str, default=None, help="Bind host (overrides [server].host)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (overrides [server].port)")

    subparsers.add_parser("prune", help="Delete sync-queue records past their retention window")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config_path = ensure_default_config(args.config)
    settings = load_settings(config_path)
    configure_logging(settings)

    command = args.command or "serve"
    if command == "prune":
        service = CatalogSyncService.from_settings(settings)
        try:
            removed = service.prune()
        finally:
            service.close()
        logger.info(f"Prune complete: {removed}")
        return 0

    host = getattr(args, "host", None) or get_setting(settings, "server", "host", "127.0.0.1")
    port = getattr(args, "port", None) or get_setting(settings, "server", "port", 8000)
    app = create_app(settings)
    # log_config=None keeps uvicorn on the handlers configured above
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())

#
# End of run.py
#######################################################################################################################
