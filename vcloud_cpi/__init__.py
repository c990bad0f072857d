"""
vCloud Director CPI core.

API client, task polling and step/rollback transactions for provisioning
against vCloud Director.

Usage:
    from vcloud_cpi import VCloudClient, Transaction
    from vcloud_cpi.steps import AddCatalogItem

    client = VCloudClient(settings)
    with Transaction("publish media", client) as txn:
        txn.next(AddCatalogItem, "media", media)
"""

from vcloud_cpi.client import VCloudClient
from vcloud_cpi.cloud import VCloud
from vcloud_cpi.settings import VCloudSettings, load_settings
from vcloud_cpi.transaction import Transaction

__all__ = [
    "VCloud",
    "VCloudClient",
    "VCloudSettings",
    "Transaction",
    "load_settings",
]
