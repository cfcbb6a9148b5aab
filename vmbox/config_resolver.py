# Copyright (c) 2025 Marc Schütze <scharc@gmail.com>
# SPDX-License-Identifier: MIT
# See LICENSE file in the project root for full license information.

"""Resolve per-instance launch parameters from etcd.

Each instance publishes four keys under /<domain>/<instance>/:

    ram         QEMU memory size (e.g. "4096")
    mac         NIC hardware address
    rbd         Ceph RBD image reference (e.g. "pool/vm42")
    spice_port  SPICE display port

Values are returned exactly as stored; format checks happen in the planner.
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple
from urllib.parse import urlparse

from vmbox.utils.exceptions import EmptyValue, InvalidInstance, MissingKey, StoreUnavailable
from vmbox.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ETCD_PORT = 2379

# LaunchConfig attribute -> etcd key name
CONFIG_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("ram", "ram"),
    ("mac", "mac"),
    ("block_device", "rbd"),
    ("spice_port", "spice_port"),
)


@dataclass(frozen=True)
class LaunchConfig:
    """Launch parameters for one VM instance, as read from etcd."""

    ram: str
    mac: str
    block_device: str
    spice_port: str


class KeyValueStore(Protocol):
    def get(self, key: str) -> Tuple[Optional[str], bool]:
        """Return (value, exists) for key."""
        ...


def validate_instance_id(instance_id: str) -> str:
    """Reject ids that are empty or would span more than one key segment."""
    if not instance_id or "/" in instance_id or instance_id.strip() != instance_id:
        raise InvalidInstance(instance_id)
    return instance_id


def parse_endpoint(url: str) -> Tuple[str, int]:
    """Split an etcd endpoint URL into (host, port).

    Accepts "http://host:port", "host:port" and bare "host".
    """
    parsed = urlparse(url if "//" in url else f"//{url}")
    host = parsed.hostname or "127.0.0.1"
    port = parsed.port or DEFAULT_ETCD_PORT
    return host, port


class EtcdStore:
    """KeyValueStore backed by etcd v3, failing over across endpoints.

    Endpoints are tried in the order given. A client is created per endpoint
    on first use and reused afterwards.
    """

    def __init__(self, endpoints: Sequence[str], timeout: Optional[float] = None):
        if not endpoints:
            raise ValueError("at least one etcd endpoint is required")
        self.endpoints = list(endpoints)
        self.timeout = timeout
        self._clients: dict = {}

    def _client(self, endpoint: str):
        client = self._clients.get(endpoint)
        if client is None:
            import etcd3

            host, port = parse_endpoint(endpoint)
            client = etcd3.client(host=host, port=port, timeout=self.timeout)
            self._clients[endpoint] = client
        return client

    def get(self, key: str) -> Tuple[Optional[str], bool]:
        import etcd3.exceptions

        last_error: Optional[BaseException] = None
        for endpoint in self.endpoints:
            try:
                value, _meta = self._client(endpoint).get(key)
            except etcd3.exceptions.Etcd3Exception as e:
                logger.debug(f"etcd {endpoint} failed for {key}: {e}")
                last_error = e
                continue
            if value is None:
                return None, False
            if isinstance(value, bytes):
                value = value.decode("utf-8")
            return value, True

        raise StoreUnavailable(key, self.endpoints, last_error)

    def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()


class ConfigResolver:
    """Reads and checks the four launch keys of an instance."""

    def __init__(self, store: KeyValueStore, domain: str = "kvm"):
        self.store = store
        self.domain = domain.strip("/")

    def key_for(self, instance_id: str, name: str) -> str:
        return f"/{self.domain}/{instance_id}/{name}"

    def resolve(self, instance_id: str) -> LaunchConfig:
        """Resolve the LaunchConfig for instance_id.

        Every key is read before reporting, so one error names all of the
        missing and empty keys. Missing keys take precedence over empty ones
        in the raised type.

        Raises:
            InvalidInstance: instance_id is empty or contains '/'
            MissingKey: a key does not exist
            EmptyValue: a key exists with an empty value
            StoreUnavailable: no etcd endpoint answered
        """
        validate_instance_id(instance_id)

        values = {}
        problems: List[Tuple[str, str]] = []
        for attr, name in CONFIG_FIELDS:
            key = self.key_for(instance_id, name)
            value, exists = self.store.get(key)
            if not exists:
                problems.append((key, "missing"))
            elif value is None or value == "":
                problems.append((key, "empty"))
            else:
                logger.debug(f"{key} = {value}")
                values[attr] = value

        if any(reason == "missing" for _, reason in problems):
            raise MissingKey(problems)
        if problems:
            raise EmptyValue(problems)

        return LaunchConfig(**values)
