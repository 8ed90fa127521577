"""Arugio entry point.

Usage:
    Run a server:   python -m arugio.main --server 9001
    Join a server:  python -m arugio.main --join 127.0.0.1:9001
    Local test:     python -m arugio.main --local
    Fullscreen:     python -m arugio.main --local --fullscreen
    Toggle fullscreen in-game: F11
"""

from __future__ import annotations

import argparse
import logging
import random
import sys

from arugio.config import DEFAULT_HOST, DEFAULT_PORT, SCREEN_HEIGHT, SCREEN_WIDTH


def main() -> None:
    parser = argparse.ArgumentParser(description="Arugio, a networked ball arena")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--server", type=int, nargs="?", const=DEFAULT_PORT, metavar="PORT",
        help=f"Run a headless server on PORT (default {DEFAULT_PORT})",
    )
    group.add_argument(
        "--join", type=str, metavar="HOST:PORT",
        help="Join a server at HOST:PORT",
    )
    group.add_argument(
        "--local", action="store_true",
        help="Run server and client in one process with loopback networking",
    )
    parser.add_argument(
        "--bind", type=str, default=DEFAULT_HOST, metavar="HOST",
        help=f"Address the server listens on (default {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Seed for the server's spawn and wander randomness",
    )
    parser.add_argument(
        "--spawn-on-demand", action="store_true",
        help="Spawn a ball for a joining player instead of failing when none is free",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--fullscreen", action="store_true",
        help="Start in fullscreen mode (toggle with F11 in-game)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if args.server is not None:
        _run_server(args.bind, args.server, args.seed, args.spawn_on_demand)
    elif args.join is not None:
        _run_join(args.join, args.fullscreen)
    elif args.local:
        _run_local(args.seed, args.spawn_on_demand, args.fullscreen)


def _run_server(host: str, port: int, seed: int | None, spawn_on_demand: bool) -> None:
    """Run the authoritative server until interrupted."""
    from arugio.networking.udp_peer import UdpConnectionManager
    from arugio.sync.server import SyncServer

    net = UdpConnectionManager()
    net.listen(host, port)
    server = SyncServer(net, rng=random.Random(seed), spawn_on_demand=spawn_on_demand)
    try:
        server.run()
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Server stopped")


def _run_join(addr: str, fullscreen: bool) -> None:
    """Join a running server."""
    from arugio.networking.udp_peer import UdpConnectionManager
    from arugio.sync.client import SyncClient

    parts = addr.rsplit(":", 1)
    if len(parts) != 2 or not parts[1].isdigit():
        print(f"Invalid address: {addr}. Expected HOST:PORT")
        sys.exit(1)
    host, port = parts[0], int(parts[1])

    net = UdpConnectionManager()
    net.connect(host, port)
    try:
        _run_window(SyncClient(net), None, fullscreen)
    finally:
        net.close()


def _run_local(seed: int | None, spawn_on_demand: bool, fullscreen: bool) -> None:
    """Run server and client in one process over loopback."""
    from arugio.networking.peer import LoopbackConnectionManager
    from arugio.sync.client import SyncClient
    from arugio.sync.server import SyncServer

    server_net = LoopbackConnectionManager()
    client_net = LoopbackConnectionManager()
    server = SyncServer(server_net, rng=random.Random(seed), spawn_on_demand=spawn_on_demand)
    client_net.link(server_net)
    _run_window(SyncClient(client_net), server, fullscreen)


def _run_window(client, server, fullscreen: bool) -> None:
    import pygame

    from arugio.game import Game

    pygame.init()
    if fullscreen:
        screen = pygame.display.set_mode((0, 0), pygame.FULLSCREEN)
    else:
        screen = pygame.display.set_mode((SCREEN_WIDTH, SCREEN_HEIGHT))
    pygame.display.set_caption("Arugio")
    try:
        Game(screen, client, server).run()
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
