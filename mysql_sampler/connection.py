"""Connection lifecycle for sampled instances: lazy connect, ping, reconnect."""

import logging
import re
from typing import Any, Callable, Dict, Optional, Sequence

import mysql.connector

from .errors import DatabaseConnectionError
from .models import Instance

logger = logging.getLogger("mysql-sampler.connection")

Connector = Callable[..., Any]

# MariaDB before 11.0 prefixes its real version with this in the handshake.
MARIADB_COMPAT_PREFIX = "5.5.5-"

_VERSION_PREFIX = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


def fold_version(version: Optional[Sequence[int]]) -> int:
    """Turn a (major, minor, patch) tuple into major*10000 + minor*100 + patch."""
    if not version:
        return 0
    parts = list(version)[:3] + [0, 0, 0]
    return int(parts[0]) * 10000 + int(parts[1]) * 100 + int(parts[2])


def detect_server_version(server_info: str, reported: Optional[Sequence[int]]) -> int:
    """
    Folded server version.

    The driver parses only the leading x.y.z of the handshake string, which
    is 5.5.5 for MariaDB 10.x; the real version follows that prefix.
    """
    if server_info.startswith(MARIADB_COMPAT_PREFIX) and "mariadb" in server_info.lower():
        match = _VERSION_PREFIX.match(server_info[len(MARIADB_COMPAT_PREFIX):])
        if match:
            return fold_version([int(g) for g in match.groups()])
    return fold_version(reported)


def _driver_error(e: Exception) -> str:
    return getattr(e, "msg", None) or str(e)


class ConnectionManager:
    """
    Hands out a live connection for an instance.

    Args:
        connector: Callable accepting mysql.connector keyword arguments and
            returning a connection object. Defaults to ``mysql.connector.connect``.
    """

    def __init__(self, connector: Optional[Connector] = None):
        self._connector = connector or mysql.connector.connect

    def connect_params(self, instance: Instance) -> Dict[str, Any]:
        """Keyword arguments for the client library built from the instance config."""
        config = instance.config
        params: Dict[str, Any] = {}
        if config.host:
            params["host"] = config.host
        if config.port:
            params["port"] = config.port
        if config.socket:
            params["unix_socket"] = config.socket
        if config.user is not None:
            params["user"] = config.user
        if config.password is not None:
            params["password"] = config.password
        if config.database:
            params["database"] = config.database
        if config.connect_timeout > 0:
            params["connection_timeout"] = config.connect_timeout

        ssl = config.ssl
        if ssl.key:
            params["ssl_key"] = ssl.key
        if ssl.cert:
            params["ssl_cert"] = ssl.cert
        if ssl.ca:
            params["ssl_ca"] = ssl.ca
        if ssl.cipher:
            params["tls_ciphersuites"] = [ssl.cipher]
        return params

    def acquire(self, instance: Instance) -> Any:
        """
        Return a live connection, reconnecting if the old one went away.

        Raises:
            DatabaseConnectionError: the server could not be reached.
        """
        if instance.connected and instance.connection is not None:
            try:
                instance.connection.ping(reconnect=False)
                return instance.connection
            except mysql.connector.Error as e:
                logger.warning(f"[DB DISCONNECT] Lost connection to instance \"{instance.name}\": {_driver_error(e)}")

        instance.connected = False
        self.close(instance)
        return self._open(instance)

    def _open(self, instance: Instance) -> Any:
        config = instance.config
        database = config.database or "<none>"
        host = config.host or "localhost"

        if config.ssl.capath:
            logger.warning(
                f"[DB CONNECT] {config.label}: SSL CA directory {config.ssl.capath} is not supported "
                f"by the client library and is ignored"
            )

        try:
            connection = self._connector(**self.connect_params(instance))
        except mysql.connector.Error as e:
            message = f"Failed to connect to database {database} at server {host}: {_driver_error(e)}"
            logger.error(f"[DB CONNECT] {message}")
            raise DatabaseConnectionError(message, host=host, database=database) from e

        instance.connection = connection
        instance.server_info = connection.server_info or ""
        instance.server_version = detect_server_version(instance.server_info, connection.server_version)
        instance.connected = True

        cipher = None
        try:
            cursor = connection.cursor()
            try:
                cursor.execute("SHOW SESSION STATUS LIKE 'Ssl_cipher'")
                row = cursor.fetchone()
                if row and row[1]:
                    cipher = row[1]
            finally:
                cursor.close()
        except mysql.connector.Error as e:
            logger.debug(f"[DB CONNECT] {config.label}: could not read TLS cipher: {_driver_error(e)}")

        logger.info(
            f"[DB CONNECT] Successfully connected to database {database} at server {host} "
            f"with cipher {cipher or '<none>'} (server version: {instance.server_info})"
        )
        return connection

    def close(self, instance: Instance) -> None:
        """Close and forget the instance's connection, if any."""
        connection = instance.connection
        instance.connection = None
        instance.connected = False
        if connection is None:
            return
        try:
            connection.close()
        except mysql.connector.Error as e:
            logger.debug(f"[DB DISCONNECT] Error while closing {instance.config.label}: {_driver_error(e)}")
