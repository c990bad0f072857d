from vcloud_cpi.entities import Task
from vcloud_cpi.errors import VCloudError
from vcloud_cpi.steps.base import Step


class Delete(Step):
    """Delete an entity and wait for the removal task. Cannot be undone."""

    def perform(self, entity, force: bool = False):
        link = getattr(entity, "remove_link", None) or entity
        try:
            result = self.client.invoke("DELETE", link)
        except VCloudError:
            if not force:
                raise
            self.client.logger.warning(f"Ignoring failure to delete {entity.name}")
            return None

        if isinstance(result, Task):
            self.client.wait_task(result, accept_failure=force)
        return result


class DeleteCatalogItem(Step):
    """Delete a catalog item (the entry, not the published entity)."""

    def perform(self, catalog_item):
        self.client.invoke("DELETE", catalog_item)
