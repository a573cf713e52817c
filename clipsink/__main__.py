"""Command-line entry point: ``python -m clipsink [-f FILE]``."""
import argparse
import logging
import socket
from pathlib import Path
from typing import List, Optional, Tuple

import uvicorn

from clipsink.config import DEFAULT_BIND, LOG_FORMAT, load_config, set_config

logger = logging.getLogger("clipsink")

DEFAULT_PORT = int(DEFAULT_BIND.rsplit(":", 1)[1])


def parse_bind(address: str) -> Tuple[str, int]:
    """Split ``host[:port]`` into its parts; IPv6 hosts go in brackets."""
    address = address.strip()
    if address.startswith("["):
        host, _, rest = address[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif address.count(":") == 1:
        host, port = address.split(":")
    else:
        host, port = address, ""
    return host or "localhost", int(port) if port else DEFAULT_PORT


def _open_sockets(bind: List[str]) -> List[socket.socket]:
    sockets = []
    for address in bind:
        host, port = parse_bind(address)
        family, kind, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM
        )[0]
        sock = socket.socket(family, kind, proto)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
        sock.set_inheritable(True)
        sockets.append(sock)
        logger.info("Listening on %s:%d", host, port)
    return sockets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipsink",
        description="ShareX upload server which dumps images to clipboard",
    )
    parser.add_argument(
        "-f",
        "--conf-file",
        dest="conf",
        metavar="FILE",
        type=Path,
        help="YAML settings file (must exist when given)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    config = load_config(args.conf)
    logger.info("Loaded configuration: %s", config.model_dump())
    set_config(config)

    server = uvicorn.Server(
        uvicorn.Config(
            "clipsink.main:app",
            log_level=config.logging.level.lower(),
        )
    )
    server.run(sockets=_open_sockets(config.bind))


if __name__ == "__main__":
    main()
