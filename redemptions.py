"""
Perk redemption workflow — student request, teacher approve/deny.

A request starts ``pending`` and is resolved exactly once. Approval flips the
status and spends one use of the perk in a single transaction; denial only
flips the status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from audit import log_event
from db_stores import PerkRequestStoreDB
from errors import NotFoundError, ValidationError
from perks import find_perk, load_course_perks
from progress import PERK_REQUEST_STATUSES, PerkRequest

logger = logging.getLogger(__name__)


def _now_iso(now: Optional[datetime]) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def request_perk_redemption(
    student_id: str,
    perk_id: str,
    course_id: str,
    student_name: str = "",
    *,
    now: Optional[datetime] = None,
) -> PerkRequest:
    """File a pending request.

    Eligibility (level, remaining uses) is the caller's job; the teacher
    reviewing the request is the check.
    """
    if not student_id:
        raise ValidationError("student_id is required")
    if not course_id:
        raise ValidationError("course_id is required")
    if find_perk(perk_id, load_course_perks(course_id)) is None:
        raise ValidationError(f"unknown perk {perk_id!r}")

    request = PerkRequestStoreDB(course_id).create(student_id, perk_id, student_name, _now_iso(now))
    logger.info("Perk %s requested (%s)", perk_id, request.id,
                extra={"student_id": student_id, "course_id": course_id})
    return request


def approve_perk_redemption(
    course_id: str,
    request_id: str,
    resolved_by: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> PerkRequest:
    """Approve a pending request and spend one use of its perk.

    Raises NotFoundError for an unknown request and ConflictError if it was
    already resolved; in both cases nothing changes.
    """
    request, usage = PerkRequestStoreDB(course_id).resolve(request_id, "approved", resolved_by, _now_iso(now))
    logger.info("Perk %s approved (%s), uses now %s", request.perk_id, request_id, usage,
                extra={"student_id": request.student_id, "course_id": course_id})
    log_event("perk.approve", actor=resolved_by, course_id=course_id,
              detail=f"{request_id} {request.perk_id} student={request.student_id}")
    return request


def deny_perk_redemption(
    course_id: str,
    request_id: str,
    resolved_by: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> PerkRequest:
    request, _ = PerkRequestStoreDB(course_id).resolve(request_id, "denied", resolved_by, _now_iso(now))
    logger.info("Perk %s denied (%s)", request.perk_id, request_id,
                extra={"student_id": request.student_id, "course_id": course_id})
    log_event("perk.deny", actor=resolved_by, course_id=course_id,
              detail=f"{request_id} {request.perk_id} student={request.student_id}")
    return request


def list_perk_requests(course_id: str, status: Optional[str] = None) -> list[PerkRequest]:
    """Requests for a course, oldest first."""
    if status is not None and status not in PERK_REQUEST_STATUSES:
        raise ValidationError(f"unknown request status {status!r}")
    return PerkRequestStoreDB(course_id).list(status)


def get_perk_request(course_id: str, request_id: str) -> PerkRequest:
    request = PerkRequestStoreDB(course_id).get(request_id)
    if request is None:
        raise NotFoundError(f"perk request {request_id!r} not found")
    return request
