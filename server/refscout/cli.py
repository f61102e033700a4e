from __future__ import annotations

import argparse
import os

from server.refscout.core.config import PROVIDER_NAMES


def add_runtime_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cache-backend",
        choices=["memory", "sql"],
        help="Provider cache backend (overrides REFSCOUT_CACHE_BACKEND).",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Disable the provider response cache.",
    )
    parser.add_argument(
        "--providers",
        help=f"Comma-separated providers to enable (default: {','.join(PROVIDER_NAMES)}).",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides REFSCOUT_LOG_LEVEL).",
    )


def apply_runtime_overrides(args: argparse.Namespace) -> None:
    if getattr(args, "cache_backend", None):
        os.environ["REFSCOUT_CACHE_BACKEND"] = args.cache_backend
    if getattr(args, "no_cache", False):
        os.environ["REFSCOUT_CACHE_ENABLED"] = "false"
    if getattr(args, "providers", None):
        os.environ["REFSCOUT_PROVIDERS"] = args.providers
    if getattr(args, "log_level", None):
        os.environ["REFSCOUT_LOG_LEVEL"] = args.log_level
