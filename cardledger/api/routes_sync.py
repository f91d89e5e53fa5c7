"""
Sync and Matching API Routes

The device-facing half of the protocol: pull, per-item push, signed
snapshot download, and server-side matching for thin clients.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..core.authority import CentralAuthority
from ..schemas import (
    Card,
    MatchResult,
    Principal,
    Print,
    PullResponse,
    PushResult,
    ScanQuery,
    SnapshotBundle,
    TargetType,
)
from .deps import current_principal, get_authority

router = APIRouter(prefix="/api", tags=["Sync"])


class PushRequest(BaseModel):
    """Items are parsed one by one so a malformed item fails alone."""

    items: list[dict[str, Any]] = Field(default_factory=list)


@router.get("/sync/pull", response_model=PullResponse, response_model_by_alias=True)
def pull(
    since: Optional[datetime] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    """Canonical state plus claim and draft-status deltas since `since`."""
    return authority.pull(principal, since)


@router.post("/sync/proposals", response_model=PushResult)
def push_proposals(
    body: PushRequest,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.push_proposals(principal, body.items)


@router.post("/sync/observations", response_model=PushResult)
def push_observations(
    body: PushRequest,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.push_observations(principal, body.items)


@router.post("/sync/drafts", response_model=PushResult)
def push_drafts(
    body: PushRequest,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.push_drafts(principal, body.items)


@router.get("/sync/snapshot", response_model=SnapshotBundle)
def download_snapshot(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    """Full-state bundle. Verify with tools/verify.py or SyncClient.restore_snapshot()."""
    return authority.download_snapshot(principal)


@router.post("/match", response_model=MatchResult, response_model_by_alias=True)
def match(
    query: ScanQuery,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.match(principal, query)


@router.get("/catalog/cards/{card_id}", response_model=Card, response_model_by_alias=True)
def get_card(
    card_id: str,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.get_record(principal, TargetType.CARD, card_id)


@router.get("/catalog/prints/{print_id}", response_model=Print)
def get_print(
    print_id: str,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.get_record(principal, TargetType.PRINT, print_id)
