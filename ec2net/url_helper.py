# This file is part of ec2net. See LICENSE file for license information.
import logging
from typing import Dict, Iterable, Optional, Tuple, Union

import requests

LOG = logging.getLogger(__name__)

REDACTED = "REDACTED"

Timeout = Union[float, Tuple[float, float]]


def combine_url(base, *add_ons):
    """Join a base url and path segments with single slashes."""
    url = base
    for add_on in add_ons:
        if not add_on:
            continue
        url = "{0}/{1}".format(url.rstrip("/"), str(add_on).lstrip("/"))
    return url


class UrlError(IOError):
    def __init__(self, cause, code=None, headers=None, url=None):
        super().__init__(str(cause))
        self.cause = cause
        self.code = code
        self.headers = headers or {}
        self.url = url


class UrlResponse:
    def __init__(self, response: requests.Response):
        self._response = response

    @property
    def contents(self) -> bytes:
        return self._response.content

    @property
    def code(self) -> int:
        return self._response.status_code


def _redact(headers: Dict[str, str], redact: Iterable[str]) -> Dict[str, str]:
    return {k: (REDACTED if k in redact else v) for k, v in headers.items()}


def readurl(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    headers_redact: Iterable[str] = (),
    timeout: Optional[Timeout] = None,
    request_method: str = "GET",
) -> UrlResponse:
    """Perform a single HTTP request.

    @param timeout: total seconds, or a (connect, read) tuple as accepted
        by requests.
    @raises UrlError: on connection failures (code is None) and on
        non-2xx responses (code is the HTTP status).
    """
    headers = headers or {}
    LOG.debug(
        "[%s] %s with headers %s",
        request_method,
        url,
        _redact(headers, headers_redact),
    )
    try:
        response = requests.request(
            request_method,
            url,
            headers=headers,
            timeout=timeout,
            allow_redirects=True,
        )
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        raise UrlError(
            e,
            code=e.response.status_code,
            headers=e.response.headers,
            url=url,
        ) from e
    except requests.exceptions.RequestException as e:
        raise UrlError(e, url=url) from e
    return UrlResponse(response)
