"""
Storage Connectors
==================

Landing, warehouse and quarantine storage for the bookings pipeline.
"""

from typing import Dict

from processing.common_code.errors import ConfigError

from .local_connector import LocalConnector
from .minio_connector import MinIOConnector


def build_connector(storage_config: Dict):
    """
    Build and connect the connector named by ``storage_config["backend"]``.

    Args:
        storage_config: Storage section of the job settings

    Returns:
        Connected LocalConnector or MinIOConnector
    """
    backend = storage_config.get("backend", "local")

    if backend == "local":
        connector = LocalConnector(storage_config.get("local", {}))
    elif backend == "minio":
        connector = MinIOConnector(storage_config.get("minio", {}))
    else:
        raise ConfigError(f"Unknown storage backend: {backend}")

    connector.connect()
    return connector


__all__ = ["LocalConnector", "MinIOConnector", "build_connector"]
