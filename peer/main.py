"""Entry point for a backup peer: starts the protocol peer and its HTTP gateway."""

import argparse
import sys
from typing import List, Optional

import uvicorn

from common.exceptions import KeyMaterialError
from common.logging_config import setup_logging
from common.security import KeystoreKeyProvider
from gateway.main import app
from gateway.routes.operation_routes import set_peer
from peer.config import PeerConfig
from peer.node import Peer


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serverless multicast backup peer")
    parser.add_argument('--peer-id', type=int, help="Peer ID (overrides PEER_ID)")
    parser.add_argument('--protocol-version', help="Protocol version, 1.0 for basic")
    parser.add_argument('--data-dir', help="Directory for chunks, restored files and metadata")
    parser.add_argument('--keystore', dest='keystore_path', help="Path to the JSON keystore")
    parser.add_argument('--host', dest='gateway_host', help="Gateway bind address")
    parser.add_argument('--port', dest='gateway_port', type=int, help="Gateway port (default 8000 + peer ID)")
    parser.add_argument('--log-level', default=None, help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Bootstrap the peer and serve the gateway until interrupted."""
    args = parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k != 'log_level'}

    try:
        config = PeerConfig.from_env(**overrides)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    logger = setup_logging('peer', log_level=args.log_level, correlation_id=f"peer-{config.peer_id}")
    logger.info(f"Initializing peer {config.peer_id} (protocol {config.protocol_version})...")

    key_provider = KeystoreKeyProvider(config.keystore_path, create_if_missing=True)
    peer = Peer(config, key_provider)

    try:
        peer.start()
    except KeyMaterialError as e:
        logger.critical(f"Key material unavailable, cannot start: {e}")
        sys.exit(1)
    except OSError as e:
        logger.critical(f"Failed to open channels: {e}")
        sys.exit(1)

    set_peer(peer)
    try:
        uvicorn.run(app, host=config.gateway_host, port=config.gateway_port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        peer.stop()
        logger.info("Peer shutdown complete")


if __name__ == "__main__":
    main()
