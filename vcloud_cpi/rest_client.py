"""
HTTP transport helper for vCloud Director calls.

Builds ready-to-execute requests and applies the proxy found in the
environment. No I/O happens until RestRequest.execute() is called.

Usage:
    from vcloud_cpi.rest_client import RestClientHelper

    helper = RestClientHelper()
    request = helper.setup_restclient({
        "method": "GET",
        "url": "https://vcd.example.com/api/versions",
        "headers": {"Accept": "application/*+xml;version=5.1"},
    })
    response = request.execute()
"""

import logging
import os
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

# Checked in order; https tier wins over http tier, lowercase before uppercase
PROXY_ENV_VARS = ("https_proxy", "HTTPS_PROXY", "http_proxy", "HTTP_PROXY")


class RestRequest:
    """
    A prepared-but-not-sent vCloud request.

    Attributes:
        request: Underlying requests.Request
        proxy_url: Proxy applied via proxy(), or None
    """

    def __init__(
        self,
        request: requests.Request,
        timeout: int = 60,
        verify: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self.request = request
        self.timeout = timeout
        self.verify = verify
        self.proxy_url: Optional[str] = None
        self._session = session

    def proxy(self, proxy_url: str) -> None:
        """Route this request through `proxy_url` for both schemes."""
        self.proxy_url = proxy_url

    def execute(self) -> requests.Response:
        """
        Send the request.

        Returns:
            The raw requests.Response (any status code)

        Raises:
            requests.RequestException: Transport-level failure
        """
        session = self._session or requests.Session()
        # Proxy selection already happened in setup_restclient
        session.trust_env = False
        proxies = None
        if self.proxy_url:
            proxies = {"http": self.proxy_url, "https": self.proxy_url}

        prepared = session.prepare_request(self.request)
        try:
            return session.send(
                prepared,
                timeout=self.timeout,
                verify=self.verify,
                proxies=proxies,
            )
        finally:
            if self._session is None:
                session.close()


class RestClientHelper:
    """Creates RestRequest objects with proxy autodetection."""

    def __init__(self, timeout: int = 60, verify: bool = False):
        self.timeout = timeout
        self.verify = verify

    def proxy_from_env(self) -> Optional[str]:
        """
        Find the proxy to use from environment variables.

        Returns:
            Proxy URL, or None when no proxy variable is set
        """
        for name in PROXY_ENV_VARS:
            value = os.environ.get(name)
            if value:
                return value
        return None

    def setup_restclient(self, params: Optional[Dict[str, Any]]) -> RestRequest:
        """
        Build a request from a descriptor.

        Args:
            params: Mapping with method, url, headers, payload, cookies and
                optional auth (a (user, password) tuple)

        Returns:
            RestRequest ready to execute
        """
        params = params or {}
        request = requests.Request(
            method=(params.get("method") or "GET").upper(),
            url=params.get("url"),
            headers=params.get("headers") or {},
            data=params.get("payload"),
            cookies=params.get("cookies"),
            auth=params.get("auth"),
        )
        rest_request = RestRequest(request, timeout=self.timeout, verify=self.verify)

        proxy = self.proxy_from_env()
        if proxy:
            logger.debug(f"Using proxy {proxy} for {request.url}")
            rest_request.proxy(proxy)

        return rest_request
