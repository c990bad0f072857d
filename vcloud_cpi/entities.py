"""
Typed wrappers around vCloud Director XML representations.

Only the accessors the client and steps need are modeled: self links,
named link lookups, task lists and a few entity-specific helpers.
Responses are parsed with defusedxml; request bodies are built with
xml.etree.ElementTree.

Usage:
    from vcloud_cpi.entities import wrap_response

    org = wrap_response(response.content)
    vdc_link = org.vdc_link("my-vdc")
"""

import xml.etree.ElementTree as ElementTree
from typing import Dict, List, Optional, Union

import defusedxml.ElementTree as ET

VCLOUD_NS = "http://www.vmware.com/vcloud/v1.5"

MEDIA_TYPE: Dict[str, str] = {
    "SESSION": "application/vnd.vmware.vcloud.session+xml",
    "ORG": "application/vnd.vmware.vcloud.org+xml",
    "VDC": "application/vnd.vmware.vcloud.vdc+xml",
    "CATALOG": "application/vnd.vmware.vcloud.catalog+xml",
    "CATALOG_ITEM": "application/vnd.vmware.vcloud.catalogItem+xml",
    "MEDIA": "application/vnd.vmware.vcloud.media+xml",
    "VAPP": "application/vnd.vmware.vcloud.vApp+xml",
    "VAPP_TEMPLATE": "application/vnd.vmware.vcloud.vAppTemplate+xml",
    "VM": "application/vnd.vmware.vcloud.vm+xml",
    "TASK": "application/vnd.vmware.vcloud.task+xml",
    "ENTITY": "application/vnd.vmware.vcloud.entity+xml",
}

TASK_STATUS: Dict[str, str] = {
    "QUEUED": "queued",
    "PRE_RUNNING": "prerunning",
    "RUNNING": "running",
    "SUCCESS": "success",
    "ERROR": "error",
    "CANCELED": "canceled",
    "ABORTED": "aborted",
}

ACTIVE_TASK_STATUSES = frozenset({
    TASK_STATUS["QUEUED"],
    TASK_STATUS["PRE_RUNNING"],
    TASK_STATUS["RUNNING"],
})
FAILED_TASK_STATUSES = frozenset({
    TASK_STATUS["ERROR"],
    TASK_STATUS["CANCELED"],
    TASK_STATUS["ABORTED"],
})
TERMINAL_TASK_STATUSES = FAILED_TASK_STATUSES | {TASK_STATUS["SUCCESS"]}

# vApp / VM status codes
POWERED_OFF = "8"
POWERED_ON = "4"


def _local(tag: str) -> str:
    """Strip the namespace from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _children(element, name: str) -> list:
    return [child for child in element if _local(child.tag) == name]


def _child(element, name: str):
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


# =============================================================================
# Links
# =============================================================================


class Link:
    """A reference to another entity (Link, Entity, CatalogItem refs ...)."""

    def __init__(self, href: str, type: Optional[str] = None,
                 name: Optional[str] = None, rel: Optional[str] = None):
        self.href = href
        self.type = type
        self.name = name
        self.rel = rel

    @classmethod
    def from_element(cls, element) -> "Link":
        return cls(
            href=element.get("href"),
            type=element.get("type"),
            name=element.get("name"),
            rel=element.get("rel"),
        )

    def __getitem__(self, key: str):
        return getattr(self, key)

    def __eq__(self, other):
        return isinstance(other, Link) and self.href == other.href

    def __hash__(self):
        return hash(self.href)

    def __repr__(self):
        return f"Link(rel={self.rel!r}, type={self.type!r}, name={self.name!r}, href={self.href!r})"


# =============================================================================
# Entities
# =============================================================================


class Entity:
    """
    Generic vCloud resource representation.

    Attributes:
        element: Parsed root XML element
    """

    def __init__(self, element):
        self.element = element

    @property
    def tag(self) -> str:
        return _local(self.element.tag)

    @property
    def href(self) -> Optional[str]:
        return self.element.get("href")

    @property
    def name(self) -> Optional[str]:
        return self.element.get("name")

    @property
    def type(self) -> Optional[str]:
        return self.element.get("type")

    @property
    def urn(self) -> Optional[str]:
        return self.element.get("id")

    @property
    def links(self) -> List[Link]:
        return [Link.from_element(e) for e in _children(self.element, "Link")]

    def link(self, rel: Optional[str] = None, type: Optional[str] = None,
             name: Optional[str] = None) -> Optional[Link]:
        """Return the first link matching every given attribute."""
        for link in self.links:
            if rel is not None and link.rel != rel:
                continue
            if type is not None and link.type != type:
                continue
            if name is not None and link.name != name:
                continue
            return link
        return None

    @property
    def tasks(self) -> List["Task"]:
        tasks_element = _child(self.element, "Tasks")
        if tasks_element is None:
            return []
        return [Task(e) for e in _children(tasks_element, "Task")]

    @property
    def running_tasks(self) -> List["Task"]:
        """Tasks still in flight (queued, pre-running or running)."""
        return [t for t in self.tasks if t.status in ACTIVE_TASK_STATUSES]

    @property
    def remove_link(self) -> Optional[Link]:
        return self.link(rel="remove")

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r}, href={self.href!r})"


class Task(Entity):
    """A remote asynchronous operation."""

    @property
    def status(self) -> str:
        return (self.element.get("status") or "").lower()

    @property
    def operation(self) -> str:
        return self.element.get("operation") or self.operation_name

    @property
    def operation_name(self) -> str:
        return self.element.get("operationName") or ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    @property
    def error_message(self) -> Optional[str]:
        error = _child(self.element, "Error")
        if error is None:
            return None
        return error.get("message")


class SupportedVersions(Entity):
    """Answer of GET /api/versions."""

    def login_url(self, version: Optional[str] = None) -> Optional[str]:
        """Login URL for `version`, or for the first listed version."""
        for info in _children(self.element, "VersionInfo"):
            version_element = _child(info, "Version")
            login_element = _child(info, "LoginUrl")
            if login_element is None:
                continue
            if version is None or (version_element is not None and version_element.text == version):
                return login_element.text
        return None


class Session(Entity):
    """Answer of the login POST."""

    @property
    def org_link(self) -> Optional[Link]:
        return self.link(type=MEDIA_TYPE["ORG"])

    @property
    def entity_resolver(self) -> Optional[Link]:
        return self.link(rel="entityResolver")


class Org(Entity):

    def vdc_link(self, name: str) -> Optional[Link]:
        return self.link(type=MEDIA_TYPE["VDC"], name=name)

    def catalog_link(self, name: str) -> Optional[Link]:
        return self.link(type=MEDIA_TYPE["CATALOG"], name=name)


class Vdc(Entity):

    def resource_entities(self, type: Optional[str] = None) -> List[Link]:
        container = _child(self.element, "ResourceEntities")
        if container is None:
            return []
        links = [Link.from_element(e) for e in _children(container, "ResourceEntity")]
        if type is not None:
            links = [link for link in links if link.type == type]
        return links

    def vapp_link(self, name: str) -> Optional[Link]:
        for link in self.resource_entities(MEDIA_TYPE["VAPP"]):
            if link.name == name:
                return link
        return None


class Catalog(Entity):

    def catalog_items(self, name: Optional[str] = None) -> List[Link]:
        """Catalog item references, optionally filtered by name."""
        container = _child(self.element, "CatalogItems")
        if container is None:
            return []
        items = [Link.from_element(e) for e in _children(container, "CatalogItem")]
        if name is not None:
            items = [item for item in items if item.name == name]
        return items

    @property
    def add_item_link(self) -> Optional[Link]:
        return self.link(rel="add", type=MEDIA_TYPE["CATALOG_ITEM"])


class CatalogItem(Entity):

    @property
    def entity(self) -> Optional[Link]:
        """Reference to the media or vApp template this item publishes."""
        element = _child(self.element, "Entity")
        if element is None:
            return None
        return Link.from_element(element)

    @staticmethod
    def build(name: str, entity: Union[Link, Entity], description: str = "") -> bytes:
        """Request body for adding `entity` to a catalog."""
        root = ElementTree.Element("CatalogItem", {"xmlns": VCLOUD_NS, "name": name})
        if description:
            ElementTree.SubElement(root, "Description").text = description
        ElementTree.SubElement(root, "Entity", {"href": entity.href})
        return ElementTree.tostring(root, encoding="utf-8")


class VApp(Entity):
    """vApp or VM; both expose the same power links."""

    @property
    def status(self) -> Optional[str]:
        return self.element.get("status")

    @property
    def is_powered_on(self) -> bool:
        return self.status == POWERED_ON

    @property
    def power_on_link(self) -> Optional[Link]:
        return self.link(rel="power:powerOn")

    @property
    def power_off_link(self) -> Optional[Link]:
        return self.link(rel="power:powerOff")

    @property
    def reboot_link(self) -> Optional[Link]:
        return self.link(rel="power:reboot")

    @property
    def undeploy_link(self) -> Optional[Link]:
        return self.link(rel="undeploy")


class ResolvedEntity(Entity):
    """Answer of the entity resolver: points at the real entity."""

    @property
    def entity_link(self) -> Optional[Link]:
        return self.link(rel="alternate")


ENTITY_CLASSES = {
    "Task": Task,
    "SupportedVersions": SupportedVersions,
    "Session": Session,
    "Org": Org,
    "Vdc": Vdc,
    "Catalog": Catalog,
    "CatalogItem": CatalogItem,
    "VApp": VApp,
    "Vm": VApp,
    "Media": Entity,
    "VAppTemplate": Entity,
    "Entity": ResolvedEntity,
}


def wrap_response(body: Union[bytes, str, None]) -> Optional[Entity]:
    """
    Parse a response body into a typed entity.

    Args:
        body: Raw XML body

    Returns:
        Entity subclass matching the root element, or None for empty bodies

    Raises:
        ValueError: Body is not well-formed XML
    """
    if body is None:
        return None
    if isinstance(body, str):
        body = body.encode("utf-8")
    if not body.strip():
        return None

    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise ValueError(f"Malformed vCloud response: {e}") from e

    entity_class = ENTITY_CLASSES.get(_local(root.tag), Entity)
    return entity_class(root)
