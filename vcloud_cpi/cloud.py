"""
CPI entry point for vCloud Director.

VCloud exposes the full CPI operation set explicitly. Each operation is
forwarded to a delegate that declares which operations it implements in
`capabilities`; anything outside that set raises UnsupportedOperationError.

Usage:
    from vcloud_cpi.cloud import VCloud

    cpi = VCloud(options)
    if cpi.has_vm(vm_id):
        cpi.reboot_vm(vm_id)
"""

import logging
from typing import Any, Dict, FrozenSet, Optional, Union

from vcloud_cpi.client import VCloudClient
from vcloud_cpi.errors import ObjectNotFoundError, UnsupportedOperationError
from vcloud_cpi.logging_config import configure_logging
from vcloud_cpi.settings import VCloudSettings
from vcloud_cpi.steps import Delete, DeleteCatalogItem, PowerOn, Reboot
from vcloud_cpi.transaction import Transaction

CPI_OPERATIONS: FrozenSet[str] = frozenset({
    "create_stemcell",
    "delete_stemcell",
    "create_vm",
    "delete_vm",
    "reboot_vm",
    "has_vm",
    "configure_networks",
    "create_disk",
    "delete_disk",
    "attach_disk",
    "detach_disk",
    "get_disk_size_mb",
    "has_disk",
    "validate_deployment",
})


class Cloud:
    """
    Default delegate: the operations built on VCloudClient and transactions.

    Attributes:
        capabilities: CPI operations this delegate implements
        client: VCloudClient owned by this instance
    """

    capabilities: FrozenSet[str] = frozenset({
        "delete_stemcell",
        "reboot_vm",
        "has_vm",
        "validate_deployment",
    })

    def __init__(self, settings: VCloudSettings, client: Optional[VCloudClient] = None,
                 logger: Optional[logging.Logger] = None):
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.client = client or VCloudClient(settings, logger=self.logger)

    def delete_stemcell(self, stemcell_id: str) -> None:
        """Delete a stemcell's vApp template and its catalog item."""
        self.logger.info(f"Deleting stemcell {stemcell_id}")
        catalog_item = self.client.resolve_entity(stemcell_id)
        template = self.client.resolve_link(catalog_item.entity)

        Transaction.perform(f"delete_stemcell({stemcell_id})", self.client, [
            (Delete, (template,)),
            (DeleteCatalogItem, (catalog_item,)),
        ], logger=self.logger)

    def has_vm(self, vm_id: str) -> bool:
        try:
            self.client.resolve_entity(vm_id)
        except ObjectNotFoundError:
            return False
        return True

    def reboot_vm(self, vm_id: str) -> None:
        """Reboot a VM, or power it on when it is off."""
        self.logger.info(f"Rebooting VM {vm_id}")
        vm = self.client.resolve_entity(vm_id)
        step = Reboot if vm.is_powered_on else PowerOn
        Transaction.perform(f"reboot_vm({vm_id})", self.client, [(step, (vm,))], logger=self.logger)

    def validate_deployment(self, old_manifest: Dict, new_manifest: Dict) -> None:
        # There is nothing to validate for vCloud deployments yet
        pass


class VCloud:
    """
    CPI façade with an explicit operation set.

    Constructing it is the CPI process entry point: the `logging` options
    section is applied to the `vcloud_cpi` logger here.
    """

    def __init__(self, options: Union[VCloudSettings, Dict[str, Any]], delegate=None):
        if not isinstance(options, VCloudSettings):
            options = VCloudSettings.from_mapping(options)
        self.settings = options
        configure_logging(options.logging)
        self._delegate = delegate or Cloud(options)

    def supports(self, operation: str) -> bool:
        return operation in CPI_OPERATIONS and operation in self._delegate.capabilities

    def _call(self, operation: str, *args, **kwargs):
        if not self.supports(operation):
            raise UnsupportedOperationError(operation, type(self).__name__)
        return getattr(self._delegate, operation)(*args, **kwargs)

    # Stemcells

    def create_stemcell(self, image, cloud_properties):
        return self._call("create_stemcell", image, cloud_properties)

    def delete_stemcell(self, stemcell_id):
        return self._call("delete_stemcell", stemcell_id)

    # VMs

    def create_vm(self, agent_id, stemcell_id, resource_pool, networks,
                  disk_locality=None, environment=None):
        return self._call("create_vm", agent_id, stemcell_id, resource_pool, networks,
                          disk_locality, environment)

    def delete_vm(self, vm_id):
        return self._call("delete_vm", vm_id)

    def reboot_vm(self, vm_id):
        return self._call("reboot_vm", vm_id)

    def has_vm(self, vm_id):
        return self._call("has_vm", vm_id)

    def configure_networks(self, vm_id, networks):
        return self._call("configure_networks", vm_id, networks)

    # Disks

    def create_disk(self, size_mb, cloud_properties, vm_locality=None):
        return self._call("create_disk", size_mb, cloud_properties, vm_locality)

    def delete_disk(self, disk_id):
        return self._call("delete_disk", disk_id)

    def attach_disk(self, vm_id, disk_id):
        return self._call("attach_disk", vm_id, disk_id)

    def detach_disk(self, vm_id, disk_id):
        return self._call("detach_disk", vm_id, disk_id)

    def get_disk_size_mb(self, disk_id):
        return self._call("get_disk_size_mb", disk_id)

    def has_disk(self, disk_id):
        """Checks if a disk exists. Not available for vCloud."""
        raise UnsupportedOperationError("has_disk", type(self).__name__)

    # Deployment

    def validate_deployment(self, old_manifest, new_manifest):
        return self._call("validate_deployment", old_manifest, new_manifest)
