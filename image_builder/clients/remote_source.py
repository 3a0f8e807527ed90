from dataclasses import dataclass

import httpx

from image_builder.clients.http import RetryPolicy, request_with_retry


@dataclass
class RemoteSourceInfo:
    url: str
    status_code: int
    content_length: int | None
    content_type: str


class RemoteSourceClient:
    """Checks that a remote OVF/OVA is reachable before a deployment is started."""

    def __init__(
        self,
        retry: RetryPolicy,
        timeout_sec: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.retry = retry
        self.timeout_sec = timeout_sec
        self.transport = transport

    def head(
        self,
        url: str,
        username: str = "",
        password: str = "",
        skip_tls_verify: bool = False,
    ) -> RemoteSourceInfo:
        auth = httpx.BasicAuth(username, password) if username and password else None
        with httpx.Client(
            timeout=self.timeout_sec,
            verify=not skip_tls_verify,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            response = request_with_retry(client, "HEAD", url, self.retry, auth=auth)
        length = response.headers.get("content-length")
        return RemoteSourceInfo(
            url=url,
            status_code=response.status_code,
            content_length=int(length) if length and length.isdigit() else None,
            content_type=response.headers.get("content-type", ""),
        )
