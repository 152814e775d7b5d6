"""Lightweight logging setup shared by the server and the CLI."""

import logging
import sys

ENV_LEVELS = {
    "local": logging.DEBUG,
    "dev": logging.DEBUG,
    "prod": logging.INFO,
}


def level_for_env(env: str) -> int:
    return ENV_LEVELS.get((env or "").lower(), logging.INFO)


def configure_logging(env: str = "local") -> None:
    # Configure root logger once; keep output simple for terminals.
    logging.basicConfig(
        level=level_for_env(env),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
