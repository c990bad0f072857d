"""
vCloud Director REST API client.

Owns one authenticated session: login, cookie refresh, the retrying
invoke() wrapper, link resolution, the entity cache and task polling.

Usage:
    from vcloud_cpi.client import VCloudClient

    with VCloudClient(settings) as client:
        vdc = client.vdc
        task = client.invoke("POST", vapp.power_on_link)
        client.wait_task(task)

A client is not safe to share between threads; create one per pipeline.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union
from urllib.parse import urljoin

import requests
from requests.exceptions import ConnectionError, Timeout

from vcloud_cpi.cache import EntityCache
from vcloud_cpi.entities import (
    FAILED_TASK_STATUSES,
    MEDIA_TYPE,
    TASK_STATUS,
    TERMINAL_TASK_STATUSES,
    Entity,
    Link,
    wrap_response,
)
from vcloud_cpi.errors import (
    ApiError,
    AuthenticationError,
    ObjectNotFoundError,
    TaskFailedError,
    TaskStateError,
    TaskTimeoutError,
    VCloudConnectionError,
    VCloudError,
)
from vcloud_cpi.rest_client import RestClientHelper
from vcloud_cpi import settings as defaults
from vcloud_cpi.settings import VCloudSettings


Target = Union[str, Link, Entity]

AUTH_HEADER = "x-vcloud-authorization"


class VCloudClient:
    """
    Single authenticated gateway to the vCloud Director API.

    Attributes:
        url: Base URL of the vCD endpoint
        cache: Entity cache, cleared on every new session
        org_link: Organization link from the current session
        entity_resolver_link: Entity resolver link from the current session
        wait_max, wait_delay, retry_max, retry_delay, cookie_timeout:
            Control settings (retry_delay in milliseconds)
    """

    WAIT_MAX = defaults.WAIT_MAX
    WAIT_DELAY = defaults.WAIT_DELAY
    RETRY_MAX = defaults.RETRY_MAX
    RETRY_DELAY = defaults.RETRY_DELAY
    COOKIE_TIMEOUT = defaults.COOKIE_TIMEOUT

    def __init__(
        self,
        settings: Union[VCloudSettings, Dict[str, Any]],
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rest_helper: Optional[RestClientHelper] = None,
    ):
        """
        Initialize the client. No network I/O happens here.

        Args:
            settings: VCloudSettings or a raw CPI options mapping
            logger: Logger to use (default: module logger)
            sleep: Delay function, injectable for tests
            clock: Monotonic clock, injectable for tests
            rest_helper: Transport helper (default: RestClientHelper)
        """
        if not isinstance(settings, VCloudSettings):
            settings = VCloudSettings.from_mapping(settings)

        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.url = settings.url.rstrip("/")
        self.api_version = settings.api_version

        control = settings.control
        self.wait_max = control.wait_max
        self.wait_delay = control.wait_delay
        self.retry_max = control.retry_max
        self.retry_delay = control.retry_delay
        self.cookie_timeout = control.cookie_timeout

        self.rest_helper = rest_helper or RestClientHelper(
            timeout=settings.request_timeout,
            verify=settings.verify_ssl,
        )
        self.cache = EntityCache()
        self._sleep = sleep
        self._clock = clock

        self._cookies: Optional[Dict[str, str]] = None
        self._auth_token: Optional[str] = None
        self._cookie_expiration: float = 0.0
        self.org_link: Optional[Link] = None
        self.entity_resolver_link: Optional[Link] = None
        self._establishing = False

    # =========================================================================
    # Configured entity names
    # =========================================================================

    @property
    def org_name(self) -> Optional[str]:
        return self.settings.entities.organization

    @property
    def vdc_name(self) -> Optional[str]:
        return self.settings.entities.virtual_datacenter

    @property
    def vapp_catalog_name(self) -> Optional[str]:
        return self.settings.entities.vapp_catalog

    @property
    def media_catalog_name(self) -> Optional[str]:
        return self.settings.entities.media_catalog

    # =========================================================================
    # Invocation
    # =========================================================================

    def invoke(
        self,
        method: str,
        target: Target,
        payload: Any = None,
        headers: Optional[Dict[str, str]] = None,
        login: bool = False,
        no_session: bool = False,
        with_response: bool = False,
        auth: Optional[Tuple[str, str]] = None,
    ):
        """
        Issue a remote call.

        Args:
            method: HTTP verb
            target: Link/entity (its href is used) or URL; paths starting
                with "/" are resolved against the base URL
            payload: Request body
            headers: Extra request headers
            login: Login call; no session check, no cookie
            no_session: Bootstrap call; no session check, no cookie
            with_response: Also return the raw requests.Response
            auth: HTTP basic credentials

        Returns:
            Wrapped entity (None for empty bodies), or (entity, response)

        Raises:
            VCloudConnectionError: Transport failure after retries
            ApiError: HTTP error answer
            ObjectNotFoundError: 404 answer
            AuthenticationError: Session could not be established
        """
        authenticated = not (login or no_session)
        if authenticated:
            self.session()
        return self._invoke(
            method, target, payload, headers,
            authenticated=authenticated,
            with_response=with_response,
            auth=auth,
        )

    def invoke_and_wait(self, method: str, target: Target, **kwargs):
        """invoke() a call answering with a Task, then wait for it."""
        task = self.invoke(method, target, **kwargs)
        return self.wait_task(task)

    def _invoke(
        self,
        method: str,
        target: Target,
        payload: Any = None,
        headers: Optional[Dict[str, str]] = None,
        authenticated: bool = True,
        with_response: bool = False,
        auth: Optional[Tuple[str, str]] = None,
    ):
        url = self._resolve_url(target)
        request_headers = {"Accept": f"application/*+xml;version={self.api_version}"}
        if headers:
            request_headers.update(headers)

        params = {
            "method": method,
            "url": url,
            "headers": request_headers,
            "payload": payload,
            "cookies": None,
        }
        if auth is not None:
            params["auth"] = auth
        if authenticated:
            self._attach_session(params)

        response = self._execute(params, authenticated)
        entity = wrap_response(response.content)
        if with_response:
            return entity, response
        return entity

    def _execute(self, params: Dict[str, Any], authenticated: bool) -> requests.Response:
        """
        Run a request with the bounded retry policy.

        Transient failures get retry_max retries. A 401 on an authenticated
        call gets one re-login and an immediate re-send outside that budget;
        a second 401 fails the call.
        """
        method = params["method"]
        url = params["url"]
        attempts = self.retry_max + 1
        last_error: Optional[VCloudError] = None
        reauthenticated = False
        attempt = 0

        while attempt < attempts:
            attempt += 1
            context = {"method": method, "url": url, "attempt": attempt}
            self.logger.debug(f"vCloud {method} {url} (attempt {attempt}/{attempts})", extra=context)
            try:
                response = self.rest_helper.setup_restclient(params).execute()
            except (ConnectionError, Timeout) as e:
                last_error = VCloudConnectionError(f"{method} {url} failed: {e}")
                last_error.__cause__ = e
            else:
                status = response.status_code
                context["status_code"] = status
                if status < 400:
                    return response

                if status == 401 and authenticated and (self._establishing or reauthenticated):
                    raise AuthenticationError(f"{method} {url} rejected the new session")
                elif status == 401 and authenticated:
                    # Server dropped our session; log in again and re-send
                    self.logger.warning(f"vCloud {method} {url} answered 401, re-authenticating",
                                        extra=context)
                    self._invalidate_session()
                    self.session()
                    self._attach_session(params)
                    reauthenticated = True
                    attempt -= 1
                    continue
                elif status == 404:
                    raise ObjectNotFoundError(f"{method} {url}: resource not found")
                elif status >= 500:
                    last_error = ApiError(
                        f"{method} {url} failed with {status}: {_error_text(response)}",
                        status_code=status,
                    )
                else:
                    raise ApiError(
                        f"{method} {url} failed with {status}: {_error_text(response)}",
                        status_code=status,
                    )

            if attempt < attempts:
                self.logger.warning(
                    f"vCloud {method} {url} failed (attempt {attempt}/{attempts}), "
                    f"retrying in {self.retry_delay}ms: {last_error}",
                    extra=context,
                )
                self._sleep(self.retry_delay / 1000.0)

        self.logger.error(f"vCloud {method} {url} failed after {attempts} attempts: {last_error}",
                          extra=context)
        raise last_error

    def _resolve_url(self, target: Target) -> str:
        href = target if isinstance(target, str) else target.href
        if not href:
            raise ValueError(f"Cannot resolve a URL from {target!r}")
        if href.startswith("/"):
            return urljoin(self.url + "/", href)
        return href

    # =========================================================================
    # Session
    # =========================================================================

    @property
    def cookie(self) -> Optional[Dict[str, str]]:
        return self._cookies

    def cookie_available(self) -> bool:
        """True while the session cookie exists and is younger than cookie_timeout."""
        return self._cookies is not None and self._clock() < self._cookie_expiration

    def session(self) -> None:
        """Ensure a valid session, establishing a new one if needed."""
        if self.cookie_available():
            return
        self._establish_session()

    def _attach_session(self, params: Dict[str, Any]) -> None:
        params["cookies"] = self._cookies
        if self._auth_token:
            params["headers"][AUTH_HEADER] = self._auth_token

    def _invalidate_session(self) -> None:
        self._cookies = None
        self._auth_token = None
        self._cookie_expiration = 0.0

    def _establish_session(self) -> None:
        """
        Run the versions -> login -> /info bootstrap.

        Raises:
            AuthenticationError: Any step failed; no session is kept
        """
        self._invalidate_session()
        self.logger.info(f"Logging into vCloud Director at {self.url} as {self.settings.login_user}")

        self._establishing = True
        try:
            versions = self._invoke("GET", "/api/versions", authenticated=False)
            login_url = None
            if versions is not None and hasattr(versions, "login_url"):
                login_url = versions.login_url(self.api_version) or versions.login_url()
            login_url = login_url or "/api/sessions"

            session, response = self._invoke(
                "POST",
                login_url,
                authenticated=False,
                with_response=True,
                auth=(self.settings.login_user, self.settings.password.get_secret_value()),
            )
            if session is None or session.org_link is None:
                raise AuthenticationError("Login answer carries no organization link")

            self._auth_token = response.headers.get(AUTH_HEADER)
            self._cookies = dict(response.cookies)
            self.org_link = session.org_link
            self.entity_resolver_link = session.entity_resolver

            _, info = self._invoke("GET", "/info", authenticated=True, with_response=True)
            if not 200 <= info.status_code < 300:
                raise AuthenticationError(f"Session probe answered {info.status_code}")

        except (VCloudError, ValueError) as e:
            self._invalidate_session()
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(f"Cannot log into vCloud Director at {self.url}: {e}") from e
        finally:
            self._establishing = False

        self._cookie_expiration = self._clock() + self.cookie_timeout
        self.cache.clear()
        self.logger.info("vCloud Director login successful")

    def logout(self) -> None:
        """Delete the remote session. Errors are logged, the local session is dropped."""
        if self._cookies is None:
            return
        try:
            self._invoke("DELETE", "/api/session", authenticated=True)
        except VCloudError as e:
            self.logger.warning(f"vCloud logout failed: {e}")
        finally:
            self._invalidate_session()
            self.cache.clear()

    def __enter__(self):
        """Context manager entry - login."""
        self.session()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - logout."""
        self.logout()
        return False

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve_link(self, link: Target) -> Optional[Entity]:
        """Follow a link and return the entity it names."""
        return self.invoke("GET", link)

    def resolve_entity(self, entity_id: str) -> Entity:
        """
        Resolve an entity by id (urn) through the session's entity resolver.

        Raises:
            ObjectNotFoundError: Resolver knows no such entity
        """
        self.session()
        if self.entity_resolver_link is None:
            raise ObjectNotFoundError("Session exposes no entity resolver")

        resolved = self.invoke("GET", f"{self.entity_resolver_link.href}{entity_id}")
        link = getattr(resolved, "entity_link", None)
        if link is None:
            raise ObjectNotFoundError(f"Invalid entity id: {entity_id}")
        return self.invoke("GET", link)

    def reload(self, entity: Entity) -> Entity:
        """Fetch a fresh representation of `entity` through its own href."""
        return self.invoke("GET", entity.href)

    def _cached(self, key: str, loader: Callable[[], Entity]) -> Entity:
        """Cache lookup that first makes sure the owning session is still valid."""
        # A new session clears the cache
        self.session()
        return self.cache.get(key, loader)

    @property
    def org(self) -> Entity:
        return self._cached("org", lambda: self.resolve_link(self.org_link))

    @property
    def vdc(self) -> Entity:
        def load():
            vdc_link = self.org.vdc_link(self.vdc_name)
            if not vdc_link:
                raise ObjectNotFoundError(f"Invalid virtual datacenter name: {self.vdc_name}")
            return self.resolve_link(vdc_link)

        return self._cached("vdc", load)

    def catalog_name(self, catalog_type: str) -> str:
        names = {
            "vapp": self.vapp_catalog_name,
            "media": self.media_catalog_name,
        }
        if catalog_type not in names:
            raise ValueError(f"Unknown catalog type: {catalog_type}")
        return names[catalog_type]

    def catalog(self, catalog_type: str) -> Entity:
        """Catalog of the given type ("vapp" or "media"), cached."""
        name = self.catalog_name(catalog_type)

        def load():
            link = self.org.catalog_link(name)
            if not link:
                raise ObjectNotFoundError(f"Invalid catalog name: {name}")
            return self.resolve_link(link)

        return self._cached(f"catalog_{catalog_type}", load)

    def catalog_item(self, catalog_type: str, name: str, expected_type: str) -> Optional[Entity]:
        """
        Find a catalog item by name whose published entity has `expected_type`.

        Returns:
            The first matching CatalogItem, or None
        """
        catalog = self.catalog(catalog_type)
        for item in catalog.catalog_items(name):
            candidate = self.resolve_link(item)
            entity = candidate.entity if candidate is not None else None
            if entity is not None and entity["type"] == expected_type:
                return candidate
        return None

    def media(self, name: str) -> Tuple[Entity, Entity]:
        """
        Look up a media by name in the media catalog.

        Returns:
            (media, catalog_item)

        Raises:
            ObjectNotFoundError: No such media
        """
        catalog_media = self.catalog_item("media", name, MEDIA_TYPE["MEDIA"])
        if catalog_media is None:
            raise ObjectNotFoundError(f"Invalid media name: {name}")
        media = self.resolve_link(catalog_media.entity)
        return media, catalog_media

    def vapp_by_name(self, name: str) -> Entity:
        """
        Look up a vApp by name in the virtual datacenter.

        Raises:
            ObjectNotFoundError: No such vApp
        """
        vapp_link = self.vdc.vapp_link(name)
        if vapp_link is None:
            raise ObjectNotFoundError(f"Invalid vApp name: {name}")
        return self.resolve_link(vapp_link)

    def upload_stream(self, url: Target, size: int, stream, content_type: str = "application/octet-stream") -> None:
        """
        PUT a byte stream to an upload link. Streams are not retried.

        Raises:
            VCloudConnectionError: Transport failure
            ApiError: Upload rejected
        """
        self.session()
        params = {
            "method": "PUT",
            "url": self._resolve_url(url),
            "headers": {"Content-Type": content_type, "Content-Length": str(size)},
            "payload": stream,
            "cookies": None,
        }
        self._attach_session(params)
        self.logger.info(f"Uploading {size} bytes to {params['url']}")

        try:
            response = self.rest_helper.setup_restclient(params).execute()
        except (ConnectionError, Timeout) as e:
            raise VCloudConnectionError(f"Upload to {params['url']} failed: {e}") from e
        if response.status_code >= 400:
            raise ApiError(
                f"Upload to {params['url']} failed with {response.status_code}",
                status_code=response.status_code,
            )

    # =========================================================================
    # Task polling
    # =========================================================================

    def timed_loop(self, deadline: Optional[float] = None) -> Iterator[int]:
        """
        Yield once per poll until `deadline` passes, sleeping wait_delay between.

        The caller decides what an exhausted loop means.
        """
        if deadline is None:
            deadline = self._clock() + self.wait_max
        iteration = 0
        while True:
            yield iteration
            iteration += 1
            if self._clock() >= deadline:
                return
            self._sleep(self.wait_delay)

    def wait_task(
        self,
        task: Entity,
        accept_failure: bool = False,
        deadline: Optional[float] = None,
        owner: Optional[Entity] = None,
    ) -> Entity:
        """
        Poll a task until it reaches a terminal status.

        Args:
            task: Task to poll
            accept_failure: Return failed tasks instead of raising
            deadline: Shared clock deadline (default: now + wait_max)
            owner: Entity the task belongs to, for messages

        Returns:
            The task as last observed

        Raises:
            TaskFailedError: Task ended error/canceled/aborted
            TaskTimeoutError: wait_max elapsed first
        """
        for _ in self.timed_loop(deadline):
            task = self.reload(task)
            status = task.status
            if status == TASK_STATUS["SUCCESS"]:
                self.logger.debug(f"Task {task.urn} {task.operation} succeeded")
                return task
            if status in FAILED_TASK_STATUSES:
                if accept_failure:
                    self.logger.warning(f"Task {task.urn} {task.operation} ended {status}")
                    return task
                raise TaskFailedError(
                    f"Task {task.urn} {task.operation} completed unsuccessfully ({status})"
                )
            self.logger.debug(f"Waiting for task {task.urn} {task.operation} ({status})")

        on = f" on {owner.name}" if owner is not None else ""
        raise TaskTimeoutError(
            f"Timed out after {self.wait_max}s waiting for task {task.urn} {task.operation}{on}"
        )

    def wait_entity(self, entity: Entity, accept_failure: bool = False) -> Entity:
        """
        Wait until every task of `entity` is terminal, then verify them.

        A task status observed terminal while waiting is authoritative, even
        if a later reload of the entity still lists the task as running.

        Returns:
            Freshly reloaded entity

        Raises:
            TaskFailedError: A task ended unsuccessfully
            TaskTimeoutError: wait_max elapsed with tasks still running
            TaskStateError: Tasks left in an unexpected non-terminal state
        """
        deadline = self._clock() + self.wait_max
        observed: Dict[str, Entity] = {}

        entity = self.reload(entity)
        pending = list(entity.running_tasks)
        while pending:
            for task in pending:
                observed[task.urn] = self.wait_task(task, accept_failure, deadline, owner=entity)
            entity = self.reload(entity)
            pending = [t for t in entity.running_tasks if t.urn not in observed]

        if accept_failure:
            return entity

        tasks: List[Entity] = [observed.get(t.urn, t) for t in entity.tasks]
        failed = [t for t in tasks if t.status in FAILED_TASK_STATUSES]
        if failed:
            details = ", ".join(f"{t.urn} {t.operation}" for t in failed)
            raise TaskFailedError(f"Some tasks failed on {entity.name}: {details}")

        unfinished = [t for t in tasks if t.status not in TERMINAL_TASK_STATUSES]
        if unfinished:
            details = ", ".join(f"{t.urn} {t.operation} ({t.status})" for t in unfinished)
            raise TaskStateError(f"Tasks in unexpected state on {entity.name}: {details}")

        return entity


def _error_text(response: requests.Response) -> str:
    """Best-effort message from a vCloud Error body."""
    try:
        error = wrap_response(response.content)
    except ValueError:
        return response.text or response.reason or ""
    if error is not None and error.element.get("message"):
        return error.element.get("message")
    return response.text or response.reason or ""
