from vcloud_cpi.entities import MEDIA_TYPE, CatalogItem
from vcloud_cpi.errors import ObjectNotFoundError
from vcloud_cpi.steps.base import Step


class AddCatalogItem(Step):
    """Publish an uploaded media or vApp template in a catalog."""

    STATE_KEY = "catalog_item"

    def perform(self, catalog_type: str, item, description: str = ""):
        catalog = self.client.catalog(catalog_type)
        add_link = catalog.add_item_link
        if add_link is None:
            raise ObjectNotFoundError(f"Catalog {catalog.name} does not accept new items")

        payload = CatalogItem.build(item.name, item, description)
        result = self.client.invoke(
            "POST",
            add_link,
            payload=payload,
            headers={"Content-Type": MEDIA_TYPE["CATALOG_ITEM"]},
        )

        self.state[self.state_key] = result
        return result

    def rollback(self):
        catalog_item = self.state.get(self.state_key)
        if not catalog_item:
            return

        self.client.invoke("DELETE", catalog_item)
        self.state.pop(self.state_key, None)
