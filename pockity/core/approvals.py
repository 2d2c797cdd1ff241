"""
API key request and approval workflow.

Requests start PENDING and are resolved once, by an admin, to APPROVED or
REJECTED. Approving a CREATE request issues a new key pair with its own
storage prefix and limits; approving an UPGRADE raises an existing key's
limits. Rejection only records the decision.

A user may hold one pending CREATE request and a key one pending UPGRADE
request. That rule is a pre-check; two simultaneous submissions can still
both land.

Owners may revoke their keys. A revoked key no longer authenticates and
cannot be upgraded.
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..config.loader import GIB
from ..storage.models import (
    ApiKey,
    ApprovalRequest,
    ApprovalStatus,
    Quota,
    RequestType,
)
from ..storage.repository import ApiKeyRepository, ApprovalRepository, LimitsRepository
from .audit import AuditAction, AuditLog
from .errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailure,
)
from .tenant import ApiKeyTenant

logger = logging.getLogger(__name__)

MAX_REQUESTED_BYTES = 1000 * GIB
MAX_REQUESTED_OBJECTS = 1_000_000
MIN_REASON_LENGTH = 10
MAX_REASON_LENGTH = 500
MAX_COMMENT_LENGTH = 500


@dataclass(frozen=True)
class IssuedCredentials:
    """A freshly minted key pair. The secret is never stored in plaintext."""
    access_key_id: str
    secret_key: str


@dataclass(frozen=True)
class ReviewOutcome:
    request: ApprovalRequest
    credentials: Optional[IssuedCredentials] = None


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_credentials() -> IssuedCredentials:
    return IssuedCredentials(
        access_key_id=f"pk_{secrets.token_hex(16)}",
        secret_key=f"sk_{secrets.token_hex(32)}",
    )


def _validate_request(requested_bytes: int, requested_objects: int, reason: str) -> None:
    if requested_bytes <= 0 or requested_bytes > MAX_REQUESTED_BYTES:
        raise ValidationFailure("Requested storage must be between 1 byte and 1000GB")
    if requested_objects <= 0 or requested_objects > MAX_REQUESTED_OBJECTS:
        raise ValidationFailure("Requested objects must be between 1 and 1M")
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ValidationFailure("Please provide a detailed reason (min 10 characters)")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationFailure("Reason too long")


class ApprovalWorkflow:
    """Submission, review and lookup of API key requests."""

    def __init__(
        self,
        requests: ApprovalRepository,
        api_keys: ApiKeyRepository,
        limits: LimitsRepository,
        audit: AuditLog
    ):
        self.requests = requests
        self.api_keys = api_keys
        self.limits = limits
        self.audit = audit

    def submit_create(
        self,
        user_id: str,
        requested_bytes: int,
        requested_objects: int,
        reason: str,
        key_name: Optional[str] = None
    ) -> ApprovalRequest:
        """Ask for a new API key with the given limits."""
        _validate_request(requested_bytes, requested_objects, reason)

        if self.requests.find_pending(RequestType.CREATE, user_id=user_id):
            raise ConflictError(
                "You already have a pending API key request. Please wait for admin review."
            )

        request = self.requests.create(ApprovalRequest(
            id=uuid.uuid4().hex,
            request_type=RequestType.CREATE,
            user_id=user_id,
            requested_bytes=requested_bytes,
            requested_objects=requested_objects,
            status=ApprovalStatus.PENDING,
            created_at=datetime.now(),
            key_name=key_name,
            reason=reason.strip(),
        ))
        self.audit.record(
            AuditAction.API_KEY_REQUEST_CREATE,
            actor_id=user_id,
            detail=(
                f"User requested API key with {requested_bytes / GIB:g}GB storage "
                f"and {requested_objects} objects"
            ),
            request_id=request.id,
            requested_bytes=requested_bytes,
            requested_objects=requested_objects,
        )
        return request

    def submit_upgrade(
        self,
        user_id: str,
        access_key_id: str,
        requested_bytes: int,
        requested_objects: int,
        reason: str
    ) -> ApprovalRequest:
        """Ask for higher limits on an existing key owned by ``user_id``."""
        _validate_request(requested_bytes, requested_objects, reason)

        api_key = self.api_keys.find(access_key_id)
        if not api_key:
            raise NotFoundError("API key not found")
        if api_key.user_id != user_id:
            raise ForbiddenError("You can only upgrade your own API keys")
        if not api_key.is_usable:
            raise ValidationFailure("Cannot request upgrade for inactive or revoked API key")

        if self.requests.find_pending(RequestType.UPGRADE, access_key_id=access_key_id):
            raise ConflictError("This API key already has a pending upgrade request")

        tenant = ApiKeyTenant(access_key_id)
        current = self.limits.get(tenant.tenant_id)
        request = self.requests.create(ApprovalRequest(
            id=uuid.uuid4().hex,
            request_type=RequestType.UPGRADE,
            user_id=user_id,
            access_key_id=access_key_id,
            requested_bytes=requested_bytes,
            requested_objects=requested_objects,
            current_bytes=current.max_bytes if current else None,
            current_objects=current.max_objects if current else None,
            status=ApprovalStatus.PENDING,
            created_at=datetime.now(),
            reason=reason.strip(),
        ))
        self.audit.record(
            AuditAction.API_KEY_UPGRADE_REQUEST,
            tenant_id=tenant.tenant_id,
            actor_id=user_id,
            detail=f"User requested upgrade for API key {access_key_id}",
            request_id=request.id,
            requested_bytes=requested_bytes,
            requested_objects=requested_objects,
        )
        return request

    def review(
        self,
        request_id: str,
        reviewer_id: str,
        approved: bool,
        comment: Optional[str] = None
    ) -> ReviewOutcome:
        """Resolve a pending request.

        Raises:
            NotFoundError: If the request doesn't exist
            ConflictError: If the request has already been reviewed
        """
        if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationFailure("Comment too long")

        request = self.requests.find(request_id)
        if not request:
            raise NotFoundError("API key request not found")
        if request.is_resolved:
            raise ConflictError("This request has already been reviewed")

        status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        resolved = self.requests.resolve(request_id, status, reviewer_id, comment, datetime.now())
        if not resolved:
            # another reviewer got there between find and resolve
            raise ConflictError("This request has already been reviewed")

        credentials = None
        if request.request_type == RequestType.CREATE:
            if approved:
                credentials = self._issue_key(request, reviewer_id)
            self.audit.record(
                AuditAction.API_KEY_REQUEST_APPROVE if approved else AuditAction.API_KEY_REQUEST_REJECT,
                actor_id=reviewer_id,
                detail=f"{'Approved' if approved else 'Rejected'} API key request for {request.user_id}",
                request_id=request_id,
                target_id=request.user_id,
                reviewer_comment=comment,
            )
        else:
            tenant = ApiKeyTenant(request.access_key_id)
            if approved:
                self.limits.set(
                    tenant.tenant_id,
                    Quota(max_bytes=request.requested_bytes, max_objects=request.requested_objects),
                )
            self.audit.record(
                AuditAction.API_KEY_UPGRADE_APPROVE if approved else AuditAction.API_KEY_UPGRADE_REJECT,
                tenant_id=tenant.tenant_id,
                actor_id=reviewer_id,
                detail=(
                    f"Admin {'approved' if approved else 'rejected'} upgrade "
                    f"for API key {request.access_key_id}"
                ),
                request_id=request_id,
                old_bytes=request.current_bytes,
                old_objects=request.current_objects,
                new_bytes=request.requested_bytes,
                new_objects=request.requested_objects,
                reviewer_comment=comment,
            )

        logger.info("Request %s %s by %s", request_id, status.value, reviewer_id)
        return ReviewOutcome(request=self.requests.find(request_id), credentials=credentials)

    def get(self, request_id: str, requester_id: str, is_admin: bool = False) -> ApprovalRequest:
        request = self.requests.find(request_id)
        if not request:
            raise NotFoundError("API key request not found")
        if not is_admin and request.user_id != requester_id:
            raise ForbiddenError("Unauthorized to view this request")
        return request

    def list_requests(
        self,
        status: Optional[ApprovalStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[ApprovalRequest]:
        if limit <= 0 or offset < 0:
            raise ValidationFailure("limit must be > 0 and offset >= 0")
        return self.requests.list(status=status, user_id=user_id, limit=limit, offset=offset)

    def list_keys(self, user_id: str) -> List[ApiKey]:
        """Every key issued to ``user_id``, revoked ones included, newest first."""
        return self.api_keys.list_for_user(user_id)

    def get_key(self, user_id: str, access_key_id: str) -> ApiKey:
        """Look up one of the user's keys.

        Raises:
            NotFoundError: If the key doesn't exist
            ForbiddenError: If the key belongs to another user
        """
        api_key = self.api_keys.find(access_key_id)
        if not api_key:
            raise NotFoundError("API key not found")
        if api_key.user_id != user_id:
            raise ForbiddenError("Unauthorized to access this API key")
        return api_key

    def revoke_key(self, user_id: str, access_key_id: str) -> ApiKey:
        """Permanently deactivate one of the user's keys.

        Stored objects and limits are left in place; the key just stops
        authenticating.

        Raises:
            ConflictError: If the key is already revoked
        """
        api_key = self.get_key(user_id, access_key_id)
        if not self.api_keys.revoke(access_key_id, datetime.now()):
            raise ConflictError("API key is already revoked")

        self.audit.record(
            AuditAction.API_KEY_REVOKE,
            tenant_id=ApiKeyTenant(access_key_id).tenant_id,
            actor_id=user_id,
            detail=f"Revoked API key {access_key_id}",
            key_name=api_key.name,
        )
        logger.info("API key %s revoked by %s", access_key_id, user_id)
        return self.api_keys.find(access_key_id)

    def authenticate(self, access_key_id: str, secret_key: str) -> ApiKeyTenant:
        """Resolve a key pair to its tenant and stamp the key as used."""
        api_key = self.api_keys.find(access_key_id) if access_key_id else None
        if not api_key or not hmac.compare_digest(api_key.secret_hash, hash_secret(secret_key or "")):
            raise UnauthorizedError("Invalid API key credentials")
        if not api_key.is_usable:
            raise UnauthorizedError("API key is inactive or revoked")
        self.api_keys.touch(access_key_id, datetime.now())
        return ApiKeyTenant(api_key.access_key_id)

    def _issue_key(self, request: ApprovalRequest, reviewer_id: str) -> IssuedCredentials:
        credentials = generate_credentials()
        self.api_keys.create(ApiKey(
            access_key_id=credentials.access_key_id,
            secret_hash=hash_secret(credentials.secret_key),
            user_id=request.user_id,
            name=request.key_name,
            created_at=datetime.now(),
        ))
        tenant = ApiKeyTenant(credentials.access_key_id)
        self.limits.set(
            tenant.tenant_id,
            Quota(max_bytes=request.requested_bytes, max_objects=request.requested_objects),
        )
        self.audit.record(
            AuditAction.API_KEY_CREATE,
            tenant_id=tenant.tenant_id,
            actor_id=reviewer_id,
            detail=f"Issued API key {credentials.access_key_id} to {request.user_id}",
            request_id=request.id,
            key_name=request.key_name,
        )
        return credentials
