"""
Sync transports

A Transport carries the sync protocol between a client and the authority:

- LocalTransport calls a CentralAuthority in-process (tests, demos, tools)
- HttpTransport talks to the FastAPI surface over httpx
"""

from datetime import datetime
from typing import Optional, Protocol

import httpx

from ..core.authority import CentralAuthority
from ..core.errors import CardLedgerError, Conflict, Forbidden, NotFound, RateLimited, ValidationError
from ..schemas import (
    OutboxDraft,
    OutboxObservation,
    OutboxProposal,
    Principal,
    PullResponse,
    PushResult,
    SnapshotBundle,
)


class Transport(Protocol):
    def pull(self, since: Optional[datetime] = None) -> PullResponse: ...

    def push_proposals(self, items: list[OutboxProposal]) -> PushResult: ...

    def push_observations(self, items: list[OutboxObservation]) -> PushResult: ...

    def push_drafts(self, items: list[OutboxDraft]) -> PushResult: ...

    def download_snapshot(self) -> SnapshotBundle: ...


class LocalTransport:
    """In-process transport bound to one principal."""

    def __init__(self, authority: CentralAuthority, principal: Principal):
        self.authority = authority
        self.principal = principal

    def pull(self, since: Optional[datetime] = None) -> PullResponse:
        return self.authority.pull(self.principal, since)

    def push_proposals(self, items: list[OutboxProposal]) -> PushResult:
        return self.authority.push_proposals(self.principal, items)

    def push_observations(self, items: list[OutboxObservation]) -> PushResult:
        return self.authority.push_observations(self.principal, items)

    def push_drafts(self, items: list[OutboxDraft]) -> PushResult:
        return self.authority.push_drafts(self.principal, items)

    def download_snapshot(self) -> SnapshotBundle:
        return self.authority.download_snapshot(self.principal)


_STATUS_ERRORS = {
    403: Forbidden,
    404: NotFound,
    409: Conflict,
    422: ValidationError,
}


class HttpTransport:
    """
    Bearer-token transport over the HTTP API.

    Args:
        client: An httpx.Client whose base_url points at the authority
                (a FastAPI TestClient works too)
        token: Session token from /api/auth/login
    """

    def __init__(self, client: httpx.Client, token: str):
        self._client = client
        self._headers = {"Authorization": f"Bearer {token}"}

    def _check(self, response: httpx.Response) -> dict:
        if response.status_code < 400:
            return response.json()
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimited(str(detail), retry_after=int(retry_after) if retry_after else None)
        error = _STATUS_ERRORS.get(response.status_code)
        if error is not None:
            raise error(str(detail))
        if response.status_code == 401:
            raise Forbidden(f"Not authenticated: {detail}")
        response.raise_for_status()
        raise CardLedgerError(str(detail))

    def _push(self, kind: str, items: list) -> PushResult:
        body = {"items": [i.model_dump(mode="json") for i in items]}
        response = self._client.post(f"/api/sync/{kind}", json=body, headers=self._headers)
        return PushResult.model_validate(self._check(response))

    def pull(self, since: Optional[datetime] = None) -> PullResponse:
        params = {"since": since.isoformat()} if since else None
        response = self._client.get("/api/sync/pull", params=params, headers=self._headers)
        return PullResponse.model_validate(self._check(response))

    def push_proposals(self, items: list[OutboxProposal]) -> PushResult:
        return self._push("proposals", items)

    def push_observations(self, items: list[OutboxObservation]) -> PushResult:
        return self._push("observations", items)

    def push_drafts(self, items: list[OutboxDraft]) -> PushResult:
        return self._push("drafts", items)

    def download_snapshot(self) -> SnapshotBundle:
        response = self._client.get("/api/sync/snapshot", headers=self._headers)
        return SnapshotBundle.model_validate(self._check(response))
