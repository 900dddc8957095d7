"""
ODBC Connection Helper

This module opens pyodbc source connections from an Airflow connection plus
the 'db.'-prefixed property bag of a run, without requiring a database
specific Airflow provider.

Connections are returned with auto-commit disabled.
"""

from typing import Dict, Optional
from airflow.hooks.base import BaseHook
import pyodbc
import logging

from rawdump.config import driver_properties

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = '{ODBC Driver 18 for SQL Server}'
DEFAULT_PORT = 1433

# Property names that map to ODBC keywords; 'schema' only selects the default
# metadata schema and is not passed to the driver
_PROPERTY_KEYWORDS = {
    'user': 'UID',
    'password': 'PWD',
}
_METADATA_ONLY_PROPERTIES = ('schema',)


class OdbcConnectionHelper:
    """
    Builds pyodbc connections for an Airflow connection ID.

    The ODBC driver name comes from the connection's `driver` extra
    (default: ODBC Driver 18 for SQL Server). Properties such as
    `db.Encrypt=no` are appended to the connection string with the prefix
    removed and override values derived from the Airflow connection.
    """

    def __init__(self, odbc_conn_id: str, properties: Optional[Dict[str, str]] = None):
        """
        Initialize the ODBC connection helper.

        Args:
            odbc_conn_id: Airflow connection ID for the database
            properties: Run property bag ('db.*' keys are used)
        """
        self.conn_id = odbc_conn_id
        self.properties = properties or {}
        self._conn_config = None

    def _get_connection_config(self) -> dict:
        """
        Get connection configuration from the Airflow connection and the properties.

        Returns:
            Dictionary with ODBC connection parameters
        """
        if self._conn_config is None:
            conn = BaseHook.get_connection(self.conn_id)
            extra = conn.extra_dejson or {}

            port = conn.port or DEFAULT_PORT
            server = f"{conn.host},{port}" if port != DEFAULT_PORT else conn.host

            config = {
                'DRIVER': extra.get('driver', DEFAULT_DRIVER),
                'SERVER': server,
                'DATABASE': conn.schema,
                'TrustServerCertificate': 'yes',
            }

            if conn.login:
                config['UID'] = conn.login
                config['PWD'] = conn.password or ''
                config['Trusted_Connection'] = 'no'
            else:
                config['Trusted_Connection'] = 'yes'

            for key, value in driver_properties(self.properties).items():
                if key in _METADATA_ONLY_PROPERTIES:
                    continue
                config[_PROPERTY_KEYWORDS.get(key, key)] = value

            self._conn_config = config

        return self._conn_config

    def _build_connection_string(self) -> str:
        """
        Build ODBC connection string from configuration.

        Returns:
            ODBC connection string
        """
        config = self._get_connection_config()
        return ';'.join([f"{k}={v}" for k, v in config.items() if v])

    def get_conn(self) -> pyodbc.Connection:
        """
        Open a pyodbc connection with auto-commit disabled.

        Returns:
            pyodbc Connection object
        """
        config = self._get_connection_config()
        logger.info(f"Connecting to {config.get('SERVER')}/{config.get('DATABASE')} ({self.conn_id})")
        return pyodbc.connect(self._build_connection_string(), autocommit=False)

    def release_conn(self, conn: Optional[pyodbc.Connection]) -> None:
        """
        Close a connection; None is ignored.

        Args:
            conn: Connection to close
        """
        if conn is None:
            return
        conn.close()
