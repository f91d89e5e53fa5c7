"""
Moderation and Admin API Routes

Moderator endpoints for proposals, consensus claims, drafts, audit and
trust; admin endpoints for direct record changes. Every route is a command
or a query against the authority, which enforces the role minimums.
"""

from typing import Any, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..core.authority import CentralAuthority
from ..schemas import (
    AuditLogEntry,
    Card,
    Claim,
    ClaimStatus,
    Draft,
    ModerationProposal,
    Observation,
    Principal,
    Print,
    ProposalStatus,
    PublishEvent,
    RecordVersion,
    TargetType,
    TrustStats,
)
from .deps import current_principal, get_authority

router = APIRouter(prefix="/api", tags=["Moderation"])


# ============================================================
# Request/Response Models
# ============================================================

class NoteRequest(BaseModel):
    note: Optional[str] = None


class ResolveClaimRequest(BaseModel):
    status: ClaimStatus
    note: Optional[str] = None


class PublishDraftRequest(BaseModel):
    edited_payload: Optional[dict[str, Any]] = None


class DraftDecision(BaseModel):
    draft: Draft
    event: PublishEvent


class RollbackRequest(BaseModel):
    to_version: int = Field(..., ge=1)
    note: Optional[str] = None


class EditRequest(BaseModel):
    values: dict[str, Any]
    note: Optional[str] = None


class RecordHistory(BaseModel):
    versions: list[RecordVersion]
    audit: list[AuditLogEntry]


Record = Union[Card, Print]


def _note(body: Optional[NoteRequest]) -> Optional[str]:
    return body.note if body else None


# ============================================================
# Proposals
# ============================================================

@router.get("/moderation/proposals", response_model=list[ModerationProposal])
def list_proposals(
    status: Optional[ProposalStatus] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.list_proposals(principal, status)


@router.post("/moderation/proposals/{proposal_id}/approve", response_model=ModerationProposal)
def approve_proposal(
    proposal_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.approve_proposal(principal, proposal_id, _note(body))


@router.post("/moderation/proposals/{proposal_id}/reject", response_model=ModerationProposal)
def reject_proposal(
    proposal_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.reject_proposal(principal, proposal_id, _note(body))


@router.post("/moderation/proposals/{proposal_id}/more-info", response_model=ModerationProposal)
def request_more_info(
    proposal_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.request_more_info(principal, proposal_id, _note(body))


# ============================================================
# Consensus
# ============================================================

@router.get("/moderation/claims", response_model=list[Claim])
def consensus_queue(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    """Open claims, highest consensus score first."""
    return authority.consensus_queue(principal)


@router.post("/moderation/claims/recompute", response_model=list[Claim])
def recompute_claims(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.recompute_all(principal)


@router.get("/moderation/claims/{claim_id}/observations", response_model=list[Observation])
def claim_observations(
    claim_id: str,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.claim_observations(principal, claim_id)


@router.post("/moderation/claims/{claim_id}/resolve", response_model=Claim)
def resolve_claim(
    claim_id: str,
    body: ResolveClaimRequest,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.resolve_claim(principal, claim_id, body.status, body.note)


@router.post("/moderation/observations/{observation_id}/spam", response_model=Observation)
def mark_observation_spam(
    observation_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.mark_observation_spam(principal, observation_id, _note(body))


@router.post("/observations/{observation_id}/withdraw", response_model=Observation)
def withdraw_observation(
    observation_id: str,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    """Authors may withdraw their own observations."""
    return authority.withdraw_observation(principal, observation_id)


# ============================================================
# Drafts
# ============================================================

@router.get("/moderation/drafts", response_model=list[Draft])
def draft_queue(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.draft_queue(principal)


@router.post("/moderation/drafts/{draft_id}/reviewing", response_model=Draft)
def mark_draft_reviewing(
    draft_id: str,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.mark_draft_reviewing(principal, draft_id)


@router.post("/moderation/drafts/{draft_id}/publish", response_model=DraftDecision)
def publish_draft(
    draft_id: str,
    body: Optional[PublishDraftRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    draft, event = authority.publish_draft(principal, draft_id, body.edited_payload if body else None)
    return DraftDecision(draft=draft, event=event)


@router.post("/moderation/drafts/{draft_id}/reject", response_model=DraftDecision)
def reject_draft(
    draft_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    draft, event = authority.reject_draft(principal, draft_id, _note(body))
    return DraftDecision(draft=draft, event=event)


@router.post("/moderation/drafts/{draft_id}/request-changes", response_model=DraftDecision)
def request_draft_changes(
    draft_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    draft, event = authority.request_draft_changes(principal, draft_id, _note(body))
    return DraftDecision(draft=draft, event=event)


@router.get("/moderation/publish-events", response_model=list[PublishEvent])
def publish_events(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.publish_events(principal)


# ============================================================
# Audit & Trust
# ============================================================

@router.get("/moderation/audit", response_model=list[AuditLogEntry])
def audit_log(
    limit: Optional[int] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    """Newest first."""
    return authority.audit_log(principal, limit)


@router.get("/moderation/history/{target_type}/{record_id}", response_model=RecordHistory)
def record_history(
    target_type: TargetType,
    record_id: str,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    versions, entries = authority.record_history(principal, target_type, record_id)
    return RecordHistory(versions=versions, audit=entries)


@router.get("/moderation/trust", response_model=list[TrustStats])
def trust_stats(
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.trust_stats(principal)


# ============================================================
# Admin
# ============================================================

@router.post("/admin/{target_type}/{record_id}/rollback", response_model=Record)
def rollback(
    target_type: TargetType,
    record_id: str,
    body: RollbackRequest,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    """Reapply a stored version as a new version. 409 if the version was never stored."""
    return authority.rollback(principal, target_type, record_id, body.to_version, body.note)


@router.post("/admin/{target_type}/{record_id}/edit", response_model=Record)
def admin_edit(
    target_type: TargetType,
    record_id: str,
    body: EditRequest,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.admin_edit(principal, target_type, record_id, body.values, body.note)


@router.post("/admin/{target_type}/{record_id}/deprecate", response_model=Record)
def deprecate(
    target_type: TargetType,
    record_id: str,
    body: Optional[NoteRequest] = None,
    principal: Principal = Depends(current_principal),
    authority: CentralAuthority = Depends(get_authority),
):
    return authority.deprecate(principal, target_type, record_id, _note(body))
