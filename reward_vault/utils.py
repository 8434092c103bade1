"""Bunch of random utilities."""

import logging
import os
from pathlib import Path

import coloredlogs
from eth_typing import HexAddress
from eth_utils import is_address, keccak
from web3 import Web3


logger = logging.getLogger(__name__)


def normalise_address(address: HexAddress | str) -> HexAddress:
    """Validate an address and bring it to the lowercase form we use as a dict key.

    - Callers may mix checksummed and lowercased addresses

    :raise ValueError:
        If the input is not an Ethereum-style address
    """
    if not isinstance(address, str) or not is_address(address):
        raise ValueError(f"Not an address: {address!r}")
    return HexAddress(address.lower())


def derive_address(*seeds: str) -> HexAddress:
    """Derive a deterministic checksummed address from seed strings.

    Used to give identities to vaults and share tokens created in memory.

    Example:

    .. code-block:: python

        share_token_address = derive_address("share-token", vault_address)
    """
    assert seeds, "Need at least one seed"
    digest = keccak(text=":".join(seeds))
    return Web3.to_checksum_address(digest[-20:])


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: str | Path = None,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in simulation scripts

    - ``LOG_LEVEL`` environment variable overrides the default level

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if simplified_logging:
        fmt = "%(message)s"
    else:
        fmt = "%(asctime)s %(name)-32s %(message)s"
    date_fmt = "%H:%M:%S"

    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt=date_fmt)

    root = logging.getLogger()

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # The file always gets at least INFO, env var controls only terminal output
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root.addHandler(file_handler)
        root.setLevel(min(logging.INFO, numeric_level))

    return root
