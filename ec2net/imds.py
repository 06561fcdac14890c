# This file is part of ec2net. See LICENSE file for license information.
"""Client for the EC2 instance metadata service (IMDSv2)."""
import logging
import time
from typing import Callable, List, Optional

from ec2net.settings import Settings
from ec2net.url_helper import UrlError, combine_url, readurl

LOG = logging.getLogger(__name__)

TOKEN_HEADER = "X-aws-ec2-metadata-token"
TOKEN_TTL_HEADER = TOKEN_HEADER + "-ttl-seconds"
TOKEN_REDACT = (TOKEN_HEADER, TOKEN_TTL_HEADER)

# Refresh a cached token this many seconds before the server expires it.
TOKEN_EXPIRY_MARGIN = 5


class MetadataUnavailable(UrlError):
    """Raised when every attempt to read a metadata path failed."""


class MetadataClient:
    """Read values from IMDS using a session token.

    The first endpoint that hands out a token is pinned for the lifetime
    of the client. Tokens are cached in memory only.
    """

    def __init__(
        self,
        settings: Settings,
        initial_setup: bool = False,
        time_fn: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.initial_setup = initial_setup
        self.endpoint: Optional[str] = None
        self._token: Optional[str] = None
        self._token_expires = 0.0
        self._token_attempted = False
        self._time = time_fn
        self._sleep = sleep_fn

    def _request_token(self, endpoint: str) -> Optional[str]:
        url = combine_url(endpoint, self.settings.imds_token_path)
        try:
            response = readurl(
                url,
                headers={TOKEN_TTL_HEADER: str(self.settings.imds_token_ttl)},
                headers_redact=TOKEN_REDACT,
                timeout=(
                    self.settings.imds_connect_timeout,
                    self.settings.imds_timeout,
                ),
                request_method="PUT",
            )
        except UrlError as e:
            LOG.debug("No IMDSv2 token from %s: %s", endpoint, e)
            return None
        return response.contents.decode("utf-8").strip() or None

    def acquire_token(self, wait: Optional[bool] = None) -> Optional[str]:
        """Sweep the configured endpoints until one returns a token.

        @param wait: keep sweeping until the token deadline passes. Defaults
            to True during initial setup of an interface, where IMDS may
            not be reachable yet.
        @return: the token, or None when no endpoint produced one.
        """
        if wait is None:
            wait = self.initial_setup
        self._token_attempted = True
        deadline = self._time() + self.settings.token_max_wait
        while True:
            for endpoint in self.settings.imds_endpoints:
                token = self._request_token(endpoint)
                if token:
                    LOG.debug("Got IMDSv2 token from %s", endpoint)
                    self.endpoint = endpoint
                    self._token = token
                    self._token_expires = (
                        self._time()
                        + self.settings.imds_token_ttl
                        - TOKEN_EXPIRY_MARGIN
                    )
                    return token
            if not wait or self._time() >= deadline:
                break
            self._sleep(self.settings.token_sleep_time)
        LOG.warning(
            "Unable to get an IMDSv2 token from %s",
            ", ".join(self.settings.imds_endpoints),
        )
        return None

    def _ensure_token(self):
        if self._token and self._time() < self._token_expires:
            return
        self._token = None
        # Only the first acquisition may wait for IMDS to come up.
        self.acquire_token(
            wait=self.initial_setup and not self._token_attempted
        )

    def fetch(self, path: str, max_attempts: Optional[int] = None) -> str:
        """Return the value stored at meta-data/<path>.

        @param max_attempts: number of GETs before giving up; 1 means no
            retry. Defaults to the configured attempt count.
        @raises MetadataUnavailable: when no attempt succeeded.
        """
        if max_attempts is None:
            max_attempts = self.settings.imds_max_attempts
        LOG.debug("Querying IMDS for %s", path)
        last_error: Optional[UrlError] = None
        for _ in range(max_attempts):
            self._ensure_token()
            if not self._token:
                raise MetadataUnavailable(
                    "no IMDSv2 token available", url=path
                )
            url = combine_url(self.endpoint, "meta-data", path)
            try:
                response = readurl(
                    url,
                    headers={TOKEN_HEADER: self._token},
                    headers_redact=TOKEN_REDACT,
                    timeout=self.settings.imds_timeout,
                )
            except UrlError as e:
                last_error = e
                if e.code == 401:
                    LOG.debug("Clearing cached IMDSv2 token due to expiry")
                    self._token = None
                continue
            return response.contents.decode("utf-8")
        raise MetadataUnavailable(
            last_error if last_error else "no attempts made",
            code=last_error.code if last_error else None,
            url=path,
        )

    def fetch_list(
        self, path: str, max_attempts: Optional[int] = None
    ) -> List[str]:
        """Return a newline separated metadata value as a list."""
        return [
            line.strip()
            for line in self.fetch(path, max_attempts).splitlines()
            if line.strip()
        ]

    def fetch_for_interface(
        self, mac: str, key: str, max_attempts: Optional[int] = None
    ) -> str:
        return self.fetch(
            "network/interfaces/macs/{0}/{1}".format(mac, key), max_attempts
        ).strip()

    def fetch_interface_list(
        self, mac: str, key: str, max_attempts: Optional[int] = None
    ) -> List[str]:
        return self.fetch_list(
            "network/interfaces/macs/{0}/{1}".format(mac, key), max_attempts
        )
