"""Multicast service channels: receive loop, ordered inbound queue and bounded worker dispatch."""

import logging
import queue
import socket
import struct
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from common.constants import MAX_DATAGRAM_BYTES
from common.types import ChannelName

logger = logging.getLogger(__name__)

MessageHandler = Callable[[ChannelName, bytes], None]
ChannelFactory = Callable[[ChannelName, Tuple[str, int], MessageHandler, int], 'ServiceChannel']

RECEIVE_POLL_SECONDS = 0.5
DISPATCH_POLL_SECONDS = 0.2


class ServiceChannel:
    """
    One logical channel.

    Inbound datagrams go through an in-memory queue in arrival order and are
    handed to the channel's own worker pool. A semaphore bounds in-flight
    handlers, so a flood backs up in the queue rather than in the executor.
    Subclasses provide the transport (_open, _close, _transmit, _receive_loop).
    """

    def __init__(self, name: ChannelName, group: Tuple[str, int], handler: MessageHandler, workers: int):
        """
        Initialize channel.

        Args:
            name: Logical channel name (MC, MDB, MDR)
            group: (address, port) of the multicast group
            handler: Called as handler(name, datagram) on a worker thread
            workers: Size of the channel's worker pool
        """
        self.name = name
        self.group = group
        self._handler = handler
        self._workers = workers
        self._queue: queue.Queue = queue.Queue()
        self._slots = threading.BoundedSemaphore(workers)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self) -> None:
        """Open the transport and start the receive and dispatch threads."""
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self._workers,
            thread_name_prefix=f"{self.name.value}-worker"
        )
        self._open()

        dispatcher = threading.Thread(target=self._dispatch_loop, daemon=True, name=f"{self.name.value}-dispatch")
        self._threads = [dispatcher]
        if self._has_receive_loop():
            self._threads.append(
                threading.Thread(target=self._receive_loop, daemon=True, name=f"{self.name.value}-receive")
            )
        for thread in self._threads:
            thread.start()

        logger.info(f"Channel {self.name.value} started on {self.group[0]}:{self.group[1]}")

    def stop(self) -> None:
        """Stop threads, close the transport and drain the worker pool."""
        self._stop_event.set()
        self._close()
        for thread in self._threads:
            thread.join(timeout=5.0)
        self._threads = []
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info(f"Channel {self.name.value} stopped")

    def send(self, data: bytes) -> None:
        """
        Send a datagram to the group.

        Raises:
            ValueError: If data exceeds the maximum datagram size
            OSError: If the transport fails
        """
        if len(data) > MAX_DATAGRAM_BYTES:
            raise ValueError(f"Datagram of {len(data)} bytes exceeds {MAX_DATAGRAM_BYTES}")
        self._transmit(data)

    def deliver(self, data: bytes) -> None:
        """Enqueue an inbound datagram."""
        if not self._stop_event.is_set():
            self._queue.put(data)

    def pending(self) -> int:
        return self._queue.qsize()

    def _dispatch_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                data = self._queue.get(timeout=DISPATCH_POLL_SECONDS)
            except queue.Empty:
                continue

            self._slots.acquire()
            try:
                self._executor.submit(self._handle, data)
            except RuntimeError:
                self._slots.release()
                break

    def _handle(self, data: bytes) -> None:
        try:
            self._handler(self.name, data)
        except Exception as e:
            logger.error(f"Unhandled error on channel {self.name.value}: {e}", exc_info=True)
        finally:
            self._slots.release()

    def _has_receive_loop(self) -> bool:
        return True

    def _open(self) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError

    def _transmit(self, data: bytes) -> None:
        raise NotImplementedError

    def _receive_loop(self) -> None:
        raise NotImplementedError


class MulticastChannel(ServiceChannel):
    """Channel over a UDP multicast group."""

    def __init__(self, name: ChannelName, group: Tuple[str, int], handler: MessageHandler, workers: int, ttl: int = 1):
        super().__init__(name, group, handler, workers)
        self._ttl = ttl
        self._sock: Optional[socket.socket] = None

    def _open(self) -> None:
        address, port = self.group
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, 'SO_REUSEPORT'):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                logger.debug("SO_REUSEPORT not supported")
        sock.bind(('', port))

        mreq = struct.pack('4sl', socket.inet_aton(address), socket.INADDR_ANY)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self._ttl)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        sock.settimeout(RECEIVE_POLL_SECONDS)
        self._sock = sock

    def _close(self) -> None:
        if self._sock is None:
            return
        try:
            mreq = struct.pack('4sl', socket.inet_aton(self.group[0]), socket.INADDR_ANY)
            self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, mreq)
        except OSError:
            pass
        self._sock.close()

    def _transmit(self, data: bytes) -> None:
        self._sock.sendto(data, self.group)

    def _receive_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                data, _ = self._sock.recvfrom(MAX_DATAGRAM_BYTES)
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop_event.is_set():
                    break
                logger.warning(f"Receive error on channel {self.name.value}: {e}")
                continue
            self._queue.put(data)


def multicast_channel_factory(ttl: int = 1) -> ChannelFactory:
    def factory(name, group, handler, workers):
        return MulticastChannel(name, group, handler, workers, ttl=ttl)
    return factory


class LocalBus:
    """
    In-process stand-in for a set of multicast groups.

    Every published datagram is delivered to every joined channel of the
    group, sender included, like multicast with loopback enabled.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._members: Dict[Tuple[str, int], List['LocalChannel']] = {}
        self.drop_filter: Optional[Callable[[Tuple[str, int], bytes], bool]] = None

    def join(self, channel: 'LocalChannel') -> None:
        with self._lock:
            self._members.setdefault(channel.group, []).append(channel)

    def leave(self, channel: 'LocalChannel') -> None:
        with self._lock:
            members = self._members.get(channel.group, [])
            if channel in members:
                members.remove(channel)

    def publish(self, group: Tuple[str, int], data: bytes) -> None:
        if self.drop_filter is not None and self.drop_filter(group, data):
            return
        with self._lock:
            members = list(self._members.get(group, []))
        for member in members:
            member.deliver(data)

    def channel_factory(self) -> ChannelFactory:
        def factory(name, group, handler, workers):
            return LocalChannel(self, name, group, handler, workers)
        return factory


class LocalChannel(ServiceChannel):
    """Channel attached to a LocalBus."""

    def __init__(self, bus: LocalBus, name: ChannelName, group: Tuple[str, int], handler: MessageHandler, workers: int):
        super().__init__(name, group, handler, workers)
        self._bus = bus

    def _has_receive_loop(self) -> bool:
        return False

    def _open(self) -> None:
        self._bus.join(self)

    def _close(self) -> None:
        self._bus.leave(self)

    def _transmit(self, data: bytes) -> None:
        self._bus.publish(self.group, data)
