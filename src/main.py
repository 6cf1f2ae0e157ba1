#!/usr/bin/env python3
"""Main entrypoint for the Apollo config sync daemon."""

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import cast, get_args

import yaml
from pydantic import ValidationError

from src.file_handler import FileSinkError
from src.host_identity import InvalidHostSpecError, resolve_host_identity
from src.settings import LogLevel, load_settings
from src.sync_service import ConfigSyncService


class Args(argparse.Namespace):
    config: Path
    log_level: LogLevel | None
    rich_logs: bool
    print_config_and_exit: bool


logger = logging.getLogger(__name__)

# Config file levels to logging levels, OFF silences everything
LOG_LEVELS: dict[str, int] = {
    "OFF": logging.CRITICAL + 1,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "TRACE": logging.DEBUG,
}


def parse_args() -> Args:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Apollo config sync daemon",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to YAML configuration file",
    )

    parser.add_argument(
        "--log-level",
        choices=get_args(LogLevel),
        help="Override the logging level of the configuration file",
    )

    parser.add_argument(
        "--rich-logs",
        action="store_true",
        help="Enable rich colored logging output",
    )

    parser.add_argument(
        "--print-config-and-exit",
        action="store_true",
        help="Print the resolved configuration as JSON and exit without running the service",
    )

    return cast(Args, parser.parse_args())


def configure_logging(log_level: str, use_rich: bool = False) -> None:
    """Configure logging with optional rich formatting.

    Args:
        log_level: Logging level (OFF, ERROR, WARN, INFO, DEBUG, TRACE)
        use_rich: Whether to use rich colored logging
    """
    if use_rich:
        from rich.console import Console
        from rich.logging import RichHandler

        logging.basicConfig(
            level=LOG_LEVELS[log_level],
            format="%(message)s",
            datefmt="[%X]",
            handlers=[
                RichHandler(
                    console=Console(stderr=True),
                    show_path=True,
                    show_time=True,
                    show_level=True,
                    markup=False,
                    rich_tracebacks=True,
                )
            ],
        )
    else:
        logging.basicConfig(
            level=LOG_LEVELS[log_level],
            format="%(asctime)s [%(threadName)s %(name)s:%(lineno)d] %(levelname)s: %(message)s",
        )

    # silence libs logging
    # - urllib3 - logs every long-poll request when debug
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def log_fatal(message: str, *args, exc_info: bool = False) -> None:
    """Log a fatal error, printing it to stderr when logging is turned off."""
    if logger.isEnabledFor(logging.ERROR):
        logger.error(message, *args, exc_info=exc_info)
    else:
        print(message % args if args else message, file=sys.stderr)


def main() -> int:
    """Main function."""
    args = parse_args()

    configure_logging(args.log_level or "INFO", args.rich_logs)

    try:
        logger.info("Loading configuration from %s", args.config)
        config = load_settings(args.config)

        if args.log_level is None:
            logging.getLogger().setLevel(LOG_LEVELS[config.log_level])

        # If print-config-and-exit flag is set, output config and exit
        if args.print_config_and_exit:
            logger.info("Printing resolved configuration")
            print(json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True))
            return 0

        targeting = resolve_host_identity(config.host)

        service = ConfigSyncService(config, targeting)

        _ = signal.signal(signal.SIGTERM, lambda _, _2: service.shutdown())

        service.run()

    except ValidationError as e:
        log_fatal(
            "Invalid config\n"
            + "\n".join(
                [
                    f"{'.'.join([str(loc) for loc in err['loc']])}: {err['msg']} (got {err['input']})"
                    for err in e.errors()
                ]
            )
        )
        return 1
    except yaml.YAMLError as e:
        log_fatal("YAML parsing error in %s: %s", args.config, e)
        return 1
    except InvalidHostSpecError as e:
        log_fatal("Invalid host identity: %s", e)
        return 1
    except FileSinkError as e:
        log_fatal("Cannot create output directory: %s", e)
        return 1
    except OSError as e:
        log_fatal("Cannot read config file %s: %s", args.config, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Config sync daemon stopped by user")
        return 0
    except Exception as e:
        log_fatal("Error running config sync daemon: %s", e, exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
