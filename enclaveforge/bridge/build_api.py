"""HTTP client for the verifiable build service.

Endpoints::

    POST /builds                         (signed)  submit
    GET  /builds/{build_id}                        get
    GET  /builds/image/{digest}                    get by image digest
    GET  /builds/verify/{identifier}               verify provenance
    GET  /builds/{build_id}/logs         (signed)  logs, plain text
    GET  /builds?billing_address=..                list

Non-2xx responses raise a ``BuildApiError`` subclass chosen by status
code; connection and timeout failures raise ``BuildApiTransportError``.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from enclaveforge.bridge.crypto_bridge import RequestSigner

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BuildApiError(RuntimeError):
    """The build service answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class BadRequestError(BuildApiError):
    """400: the request was rejected as invalid."""


class AuthRequiredError(BuildApiError):
    """401: missing or expired authentication."""


class ForbiddenError(BuildApiError):
    """403: authenticated but not allowed (often billing)."""


class BuildNotFoundError(BuildApiError):
    """404: no such build, digest or identifier."""


class ConflictError(BuildApiError):
    """409: e.g. a build for this commit is already running."""


class BuildApiTransportError(BuildApiError):
    """The service could not be reached."""


class SignerRequiredError(RuntimeError):
    """An authenticated endpoint was called without a request signer."""


_STATUS_ERRORS: dict[int, type[BuildApiError]] = {
    400: BadRequestError,
    401: AuthRequiredError,
    403: ForbiddenError,
    404: BuildNotFoundError,
    409: ConflictError,
}


def _error_for(response: httpx.Response) -> BuildApiError:
    body = response.text
    cls = _STATUS_ERRORS.get(response.status_code, BuildApiError)
    return cls(
        f"Build API request failed: {response.status_code} {response.request.url} - "
        f"{body or 'Unknown error'}",
        status_code=response.status_code,
        body=body,
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class BuildApiClient:
    """Raw JSON access to the build service.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``; its lifetime belongs to the caller.
    base_url:
        Service root, e.g. the environment's user API URL.
    client_id:
        Sent as ``x-client-id`` on every request when set.
    signer:
        Required for submit and logs.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        client_id: str = "",
        signer: RequestSigner | None = None,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._signer = signer

    @property
    def account(self) -> str | None:
        return self._signer.account if self._signer else None

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    async def submit_build(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request_json("POST", "/builds", json=payload, signed=True)

    async def get_build(self, build_id: str) -> dict[str, Any]:
        return await self._request_json("GET", f"/builds/{quote(build_id, safe='')}")

    async def get_build_by_digest(self, digest: str) -> dict[str, Any]:
        return await self._request_json("GET", f"/builds/image/{quote(digest, safe='')}")

    async def verify(self, identifier: str) -> dict[str, Any]:
        return await self._request_json("GET", f"/builds/verify/{quote(identifier, safe='')}")

    async def get_logs(self, build_id: str) -> str:
        response = await self._send(
            "GET", f"/builds/{quote(build_id, safe='')}/logs", signed=True
        )
        return response.text

    async def list_builds(
        self, billing_address: str, *, limit: int | None = None, offset: int | None = None
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"billing_address": billing_address}
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        data = await self._request_json("GET", "/builds", params=params)
        if isinstance(data, dict):
            data = data.get("builds") or []
        return list(data)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _headers(self, signed: bool) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._client_id:
            headers["x-client-id"] = self._client_id
        if signed:
            if self._signer is None:
                raise SignerRequiredError(
                    "An API signing key is required for this request "
                    "(set ENCLAVEFORGE_API_SIGNING_KEY)."
                )
            headers.update(self._signer.headers())
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        signed: bool = False,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method, url, headers=self._headers(signed), json=json, params=params
            )
        except httpx.HTTPError as exc:
            raise BuildApiTransportError(
                f"Build API request to {url} failed: {exc}"
            ) from exc
        logger.debug("%s %s -> %d", method, url, response.status_code)
        if not response.is_success:
            raise _error_for(response)
        return response

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise BuildApiError(
                f"Build API returned non-JSON body for {path}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
