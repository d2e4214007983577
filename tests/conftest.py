"""Shared pytest fixtures for all tests."""

import os
import time

import pytest
from pathlib import Path

from cli.config import Config
from common.security import StaticKeyProvider
from peer.channel import LocalBus
from peer.config import PeerConfig
from peer.node import Peer


# Responders answer in a fixed order: peer N waits JITTER_BASE + (N - 1) * JITTER_STEP.
JITTER_BASE = 0.05
JITTER_STEP = 0.15


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class Cluster:
    """Peers wired to one in-process bus, sharing a key provider."""

    def __init__(self, root: Path):
        self.root = root
        self.bus = LocalBus()
        self.keys = StaticKeyProvider.generate()
        self.peers = {}
        self._started = []

    def config(self, peer_id: int, **overrides) -> PeerConfig:
        jitter = JITTER_BASE + (peer_id - 1) * JITTER_STEP
        values = dict(
            peer_id=peer_id,
            data_dir=self.root / f"peer{peer_id}",
            advertise_host="127.0.0.1",
            gateway_host="127.0.0.1",
            base_timeout=1.0,
            max_attempts=3,
            jitter_min=jitter,
            jitter_max=jitter,
            consecutive_delay=0.01,
            restore_chunk_timeout=0.5,
            delete_attempts=3,
            reclaim_pacing=0.0,
            save_interval=60.0,
            channel_workers=4,
            backup_workers=4,
            scheduler_workers=4,
        )
        values.update(overrides)
        return PeerConfig(**values)

    def add(self, peer_id: int, **overrides) -> Peer:
        return self.start(self.config(peer_id, **overrides))

    def start(self, config: PeerConfig) -> Peer:
        peer = Peer(config, self.keys, channel_factory=self.bus.channel_factory())
        peer.start()
        self.peers[config.peer_id] = peer
        self._started.append(peer)
        return peer

    def restart(self, peer: Peer) -> Peer:
        peer.stop()
        return self.start(peer.config)

    def stop_all(self) -> None:
        for peer in reversed(self._started):
            peer.stop()


@pytest.fixture
def wait_for():
    """The wait_until polling helper."""
    return wait_until


@pytest.fixture
def cluster(tmp_path):
    """
    Empty cluster; tests add peers with cluster.add(peer_id, **overrides).
    """
    c = Cluster(tmp_path / 'cluster')
    yield c
    c.stop_all()


@pytest.fixture
def enhanced_cluster(cluster):
    """Four enhanced peers (IDs 1-4)."""
    for peer_id in range(1, 5):
        cluster.add(peer_id)
    return cluster


@pytest.fixture
def basic_cluster(cluster):
    """Four basic-protocol peers (IDs 1-4)."""
    for peer_id in range(1, 5):
        cluster.add(peer_id, protocol_version="1.0")
    return cluster


@pytest.fixture
def large_file(tmp_path):
    """
    A 200,000-byte file (four chunks, the last one 8,000 bytes).
    """
    file_path = tmp_path / 'files' / 'large.bin'
    file_path.parent.mkdir(parents=True)
    file_path.write_bytes(os.urandom(200_000))
    return file_path


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .mcbackup directory
    """
    config_dir = tmp_path / '.mcbackup'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a small sample file (one chunk).

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to sample text file
    """
    file_path = tmp_path / 'test.txt'
    file_path.write_text('Sample content for testing')
    return file_path
