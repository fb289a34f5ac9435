"""
LDAP connection handling.

How long a connection lives is a policy injected into the directory adapter:
a batch run reuses one connection throughout, a long-lived process opens a
fresh connection for every operation so a dropped connection only costs one
call.
"""

import os
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import ldap

from config import Settings


logger = logging.getLogger(__name__)


class LDAPConnectionFactory:
    """Opens and binds LDAP connections."""

    def __init__(self, settings: Settings):
        self.server = settings.ldap_server
        self.bind_dn = settings.ldap_bind_dn
        self.bind_password = settings.ldap_bind_password
        self.use_tls = settings.ldap_use_tls
        self.ca_cert_file = settings.ldap_ca_cert_file
        self.timeout = settings.ldap_timeout

    def connect(self):
        """Establish connection to LDAP server."""
        logger.debug(f"Connecting to LDAP server: {self.server}")

        # Configure TLS certificate verification if CA cert is provided
        if self.ca_cert_file and os.path.exists(self.ca_cert_file):
            logger.debug(f"Using custom CA certificate: {self.ca_cert_file}")
            ldap.set_option(ldap.OPT_X_TLS_CACERTFILE, self.ca_cert_file)
            ldap.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
        elif self.ca_cert_file:
            logger.warning(f"CA certificate file not found: {self.ca_cert_file}")

        conn = ldap.initialize(self.server)
        conn.protocol_version = ldap.VERSION3
        conn.set_option(ldap.OPT_REFERRALS, 0)
        conn.set_option(ldap.OPT_NETWORK_TIMEOUT, self.timeout)
        conn.timeout = self.timeout

        if self.use_tls and self.server.startswith("ldap://"):
            conn.start_tls_s()

        conn.simple_bind_s(self.bind_dn, self.bind_password)
        return conn


class ConnectionPolicy:
    """Decides when LDAP connections are opened and closed."""

    def __init__(self, factory: LDAPConnectionFactory):
        self.factory = factory

    @contextmanager
    def connection(self) -> Iterator:
        raise NotImplementedError

    def close(self):
        """Release anything the policy is still holding."""


class BatchConnectionPolicy(ConnectionPolicy):
    """Reuse a single connection for the whole run."""

    def __init__(self, factory: LDAPConnectionFactory):
        super().__init__(factory)
        self._conn = None

    @contextmanager
    def connection(self) -> Iterator:
        if self._conn is None:
            self._conn = self.factory.connect()
            logger.info("Successfully connected to LDAP")
        yield self._conn

    def close(self):
        if self._conn is not None:
            try:
                self._conn.unbind_s()
                logger.info("Disconnected from LDAP")
            except ldap.LDAPError as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            self._conn = None


class PerOperationConnectionPolicy(ConnectionPolicy):
    """Open a new connection for every operation and unbind it afterwards."""

    @contextmanager
    def connection(self) -> Iterator:
        conn = self.factory.connect()
        try:
            yield conn
        finally:
            try:
                conn.unbind_s()
            except ldap.LDAPError as e:
                # nothing useful to do with a connection that won't close
                logger.debug(f"Error closing LDAP connection: {e}")


def connection_policy_for(settings: Settings, factory: Optional[LDAPConnectionFactory] = None) -> ConnectionPolicy:
    """Pick the connection policy matching LDAP_CONNECTION_MODE."""
    factory = factory or LDAPConnectionFactory(settings)
    if settings.ldap_connection_mode == "long-lived":
        return PerOperationConnectionPolicy(factory)
    return BatchConnectionPolicy(factory)
