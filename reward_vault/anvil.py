"""Anvil mainnet fork for running the vault against live ERC-20 contracts.

- `Anvil <https://book.getfoundry.sh/reference/anvil/>`__ is the local test node of Foundry

- The fork is launched with ``--auto-impersonate``, so the vault custody account
  and any token holder can send transactions without a private key

To install Anvil:

.. code-block:: shell

    curl -L https://foundry.paradigm.xyz | bash
    foundryup

Example:

.. code-block:: python

    launch = launch_anvil(os.environ["JSON_RPC_BASE"])
    try:
        web3 = Web3(HTTPProvider(launch.json_rpc_url))
        set_balance(web3, vault.address, 10**18)
    finally:
        launch.close()
"""

import logging
import os
import random
import shutil
import socket
import time
from dataclasses import dataclass
from subprocess import DEVNULL, PIPE

import psutil
import requests
from eth_typing import HexAddress
from web3 import HTTPProvider, Web3


logger = logging.getLogger(__name__)


def is_localhost_port_listening(port: int, host="127.0.0.1") -> bool:
    """Check if a process occupies a localhost port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) == 0


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Pick a random free localhost port.

    :raise RuntimeError:
        No free port after ``max_attempt`` tries
    """
    for attempt in range(max_attempt):
        port = random.randrange(min_port, max_port)
        if not is_localhost_port_listening(port):
            return port
    raise RuntimeError(f"Could not find a free port in {min_port} - {max_port}, {max_attempt} attempts")


@dataclass
class AnvilLaunch:
    """Anvil process running on background."""

    #: Port bound by Anvil
    port: int

    #: Command line used to start Anvil
    cmd: list[str]

    #: Where Anvil listens to JSON-RPC
    json_rpc_url: str

    process: psutil.Popen

    def close(self, block_timeout=30) -> tuple[bytes, bytes]:
        """Kill Anvil and wait until its port is released.

        :return:
            Anvil stdout, stderr
        """
        if self.process.poll() is None:
            self.process.kill()
        stdout, stderr = self.process.communicate()

        deadline = time.time() + block_timeout
        while is_localhost_port_listening(self.port):
            if time.time() > deadline:
                raise AssertionError(f"Anvil still listening at port {self.port} after {block_timeout} seconds")
            time.sleep(0.1)

        logger.info("Anvil at port %d shut down", self.port)
        return stdout, stderr


def launch_anvil(
    fork_url: str,
    unlocked_addresses: list[HexAddress | str] | None = None,
    cmd="anvil",
    launch_wait_seconds=20.0,
    test_request_timeout=3.0,
) -> AnvilLaunch:
    """Fork a network with Anvil.

    :param fork_url:
        JSON-RPC URL of the network to fork

    :param unlocked_addresses:
        Accounts to impersonate explicitly

    :param launch_wait_seconds:
        How long to wait for Anvil to answer JSON-RPC

    :raise AssertionError:
        Anvil is not installed or did not start
    """
    assert shutil.which(cmd) is not None, f"{cmd} command not in PATH {os.environ.get('PATH')}"

    port = find_free_port()
    url = f"http://localhost:{port}"
    cmd_list = [cmd, "--port", str(port), "--fork-url", fork_url, "--auto-impersonate"]

    logger.info("Launching anvil: %s", " ".join(cmd_list[:3]))
    env = os.environ.copy()
    env["RUST_BACKTRACE"] = "1"
    process = psutil.Popen(cmd_list, stdin=DEVNULL, stdout=PIPE, stderr=PIPE, env=env)
    launch = AnvilLaunch(port, cmd_list, url, process)

    web3 = Web3(HTTPProvider(url, request_kwargs={"timeout": test_request_timeout}))
    current_block = None
    deadline = time.time() + launch_wait_seconds
    while time.time() < deadline:
        try:
            current_block = web3.eth.block_number
            break
        except (requests.exceptions.ConnectionError, requests.exceptions.ReadTimeout):
            time.sleep(0.1)

    if current_block is None:
        stdout, stderr = launch.close()
        raise AssertionError(f"Anvil did not start at {url}, stderr: {stderr.decode('utf-8', errors='replace')}")

    logger.info(f"Anvil forked chain {web3.eth.chain_id} at block {current_block:,}, JSON-RPC is {url}")

    for address in unlocked_addresses or []:
        unlock_account(web3, address)

    return launch


def unlock_account(web3: Web3, address: HexAddress | str):
    """Accept transactions from an account without its private key."""
    web3.provider.make_request("anvil_impersonateAccount", [Web3.to_checksum_address(address)])


def set_balance(web3: Web3, address: HexAddress | str, raw_amount: int):
    """Set the native gas token balance of an account."""
    assert type(raw_amount) == int
    web3.provider.make_request("anvil_setBalance", [Web3.to_checksum_address(address), hex(raw_amount)])
