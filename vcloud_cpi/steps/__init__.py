"""
Transaction steps.

Each step performs one remote mutation through VCloudClient and knows how
to undo it.

Usage:
    from vcloud_cpi.steps import AddCatalogItem
    from vcloud_cpi.transaction import Transaction

    with Transaction("publish media", client) as txn:
        txn.next(AddCatalogItem, "media", media)
"""

from vcloud_cpi.steps.base import Step, StepResult
from vcloud_cpi.steps.add_catalog_item import AddCatalogItem
from vcloud_cpi.steps.delete import Delete, DeleteCatalogItem
from vcloud_cpi.steps.power import PowerOff, PowerOn, Reboot

__all__ = [
    "Step",
    "StepResult",
    "AddCatalogItem",
    "Delete",
    "DeleteCatalogItem",
    "PowerOff",
    "PowerOn",
    "Reboot",
]
