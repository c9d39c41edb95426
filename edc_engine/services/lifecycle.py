"""Response lifecycle state machine.

A response moves ``draft -> complete -> verified -> locked -> signed``.
The only backward edges go to ``draft``: ``unlock`` (any non-draft state,
reason required) and ``edit_completed`` (complete, verified or locked;
reason required, payload replaced).

Every transition runs its checks in a fixed order before anything is
written:

1. role gate
2. response exists
3. reason for change, signature meaning, re-authentication
4. source state
5. optimistic lock token (the ``updated_at`` the caller last read)
6. payload validation (submit only)

The write is one compare-and-swap ``UPDATE ... WHERE id = ? AND status = ?
AND updated_at = ?``; when no row matches, another writer got there first
and the caller receives a retryable conflict. The audit row (with the
reason for change) and, for ``sign``, the signature row are inserted in
the same transaction as the state change.

Rejections are returned as values (``TransitionResult`` carrying a
``LifecycleError``); only storage failures raise.
"""

from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from edc_engine.config import get_settings
from edc_engine.models.database import utcnow
from edc_engine.models.form_definition import FormDefinition
from edc_engine.models.response import FormResponse, ResponseStatus
from edc_engine.models.signature import Signature
from edc_engine.services.audit import AuditTrail
from edc_engine.services.form_state import apply_calculated_values
from edc_engine.services.permissions import (
    Permission,
    get_member,
    has_permission,
    roles_with,
)
from edc_engine.services.signing import CredentialVerifier, ReauthenticationVerifier
from edc_engine.services.validator_generator import FieldError, compile_validator
from edc_engine.logging_config import get_logger

logger = get_logger(__name__)

CONFLICT_MESSAGE = "This record has been modified by another user. Please refresh and try again."

Token = Union[datetime, str, None]


class TransitionKind(str, Enum):
    SAVE_DRAFT = "save_draft"
    SUBMIT = "submit"
    VERIFY = "verify"
    LOCK = "lock"
    SIGN = "sign"
    UNLOCK = "unlock"
    EDIT_COMPLETED = "edit_completed"


class ErrorKind(str, Enum):
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    PRECONDITION = "precondition"
    CONFLICT = "conflict"
    VALIDATION = "validation"


@dataclass(frozen=True)
class LifecycleError:
    """Why a transition was rejected.

    Attributes:
        kind: Error category
        message: Human-readable description
        field_errors: Payload errors (validation only)
        retryable: True when re-reading the response and retrying may succeed
    """
    kind: ErrorKind
    message: str
    field_errors: tuple[FieldError, ...] = ()
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "fieldErrors": [e.to_dict() for e in self.field_errors],
            "retryable": self.retryable,
        }


@dataclass
class TransitionResult:
    """Outcome of a lifecycle operation."""
    ok: bool
    response: Optional[FormResponse] = None
    error: Optional[LifecycleError] = None

    @classmethod
    def success(cls, response: FormResponse) -> "TransitionResult":
        return cls(ok=True, response=response)

    @classmethod
    def failure(cls, error: LifecycleError) -> "TransitionResult":
        return cls(ok=False, error=error)


class TransitionRejected(Exception):
    """Raised inside the lifecycle to abort a transition before writing."""

    def __init__(self, kind: ErrorKind, message: str, field_errors=(), retryable: bool = False):
        self.error = LifecycleError(
            kind=kind,
            message=message,
            field_errors=tuple(field_errors),
            retryable=retryable,
        )
        super().__init__(message)


class LifecycleStorageError(Exception):
    """Raised when the database fails while applying a transition."""
    pass


@dataclass(frozen=True)
class TransitionRule:
    """Gate, precondition and effect of one transition kind.

    Attributes:
        permission: Permission the caller's role must grant
        sources: States the transition may start from
        target: Resulting state (None keeps the current state)
        needs_reason: Reason for change is mandatory
        replaces_payload: The call carries the new payload
        token_optional: The lock token is only checked when supplied
        stamp: Prefix of the ``<stamp>_by`` / ``<stamp>_at`` columns to set
        clears_lock: Reset ``locked_by`` / ``locked_at``
    """
    permission: Permission
    sources: frozenset
    target: Optional[ResponseStatus]
    needs_reason: bool = False
    replaces_payload: bool = False
    token_optional: bool = False
    stamp: Optional[str] = None
    clears_lock: bool = False


TRANSITIONS: dict[TransitionKind, TransitionRule] = {
    TransitionKind.SAVE_DRAFT: TransitionRule(
        permission=Permission.EDIT_DATA,
        sources=frozenset({ResponseStatus.DRAFT}),
        target=None,
        replaces_payload=True,
        token_optional=True,
    ),
    TransitionKind.SUBMIT: TransitionRule(
        permission=Permission.EDIT_DATA,
        sources=frozenset({ResponseStatus.DRAFT}),
        target=ResponseStatus.COMPLETE,
        stamp="completed",
    ),
    TransitionKind.VERIFY: TransitionRule(
        permission=Permission.VERIFY_FORMS,
        sources=frozenset({ResponseStatus.COMPLETE}),
        target=ResponseStatus.VERIFIED,
        stamp="verified",
    ),
    TransitionKind.LOCK: TransitionRule(
        permission=Permission.LOCK_FORMS,
        sources=frozenset({ResponseStatus.VERIFIED}),
        target=ResponseStatus.LOCKED,
        stamp="locked",
    ),
    TransitionKind.SIGN: TransitionRule(
        permission=Permission.SIGN_FORMS,
        sources=frozenset({ResponseStatus.LOCKED}),
        target=ResponseStatus.SIGNED,
    ),
    TransitionKind.UNLOCK: TransitionRule(
        permission=Permission.UNLOCK_FORMS,
        sources=frozenset({
            ResponseStatus.COMPLETE,
            ResponseStatus.VERIFIED,
            ResponseStatus.LOCKED,
            ResponseStatus.SIGNED,
        }),
        target=ResponseStatus.DRAFT,
        needs_reason=True,
        clears_lock=True,
    ),
    TransitionKind.EDIT_COMPLETED: TransitionRule(
        permission=Permission.EDIT_COMPLETED,
        sources=frozenset({
            ResponseStatus.COMPLETE,
            ResponseStatus.VERIFIED,
            ResponseStatus.LOCKED,
        }),
        target=ResponseStatus.DRAFT,
        needs_reason=True,
        replaces_payload=True,
        clears_lock=True,
    ),
}


def parse_token(value: Token) -> Optional[datetime]:
    """Normalize a lock token to an aware UTC datetime.

    Naive datetimes (as SQLite returns them) are taken to be UTC.

    Raises:
        ValueError: If a string token is not ISO 8601
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_token(previous: Optional[datetime]) -> datetime:
    """New ``updated_at`` value, strictly later than the previous one."""
    now = utcnow()
    last = parse_token(previous)
    if last is not None and now <= last:
        return last + timedelta(microseconds=1)
    return now


class ResponseLifecycle:
    """Applies lifecycle transitions to stored responses.

    Args:
        db: Database session; each successful transition commits it
        credential_verifier: Re-authentication collaborator for ``sign``
            (defaults to CredentialVerifier over StudyMember)

    Example:
        >>> lifecycle = ResponseLifecycle(db)
        >>> result = lifecycle.transition(
        ...     "unlock", response.id, "pi", response.updated_at,
        ...     actor_id="user-1", reason="fix it",
        ... )
        >>> result.response.status
        'draft'
    """

    def __init__(self, db: Session, credential_verifier: Optional[ReauthenticationVerifier] = None):
        self.db = db
        self.credential_verifier = credential_verifier or CredentialVerifier(db)

    # ------------------------------------------------------------------
    # Public API

    def save_draft(
        self,
        response_id: Optional[int] = None,
        *,
        role: Optional[str],
        actor_id: str,
        payload: Any,
        study_id: Optional[str] = None,
        participant_id: Optional[str] = None,
        form_id: Optional[int] = None,
        expected_updated_at: Token = None,
    ) -> TransitionResult:
        """Create a draft response, or replace the payload of an existing draft.

        Args:
            response_id: Existing response, or None to create one
            role: Caller's study role
            actor_id: Caller's user id
            payload: Complete response payload
            study_id: Study of the new response (creation only)
            participant_id: Participant of the new response (creation only)
            form_id: Form definition of the new response (creation only)
            expected_updated_at: Lock token; checked only when supplied

        Returns:
            TransitionResult
        """
        if response_id is not None:
            return self.transition(
                TransitionKind.SAVE_DRAFT,
                response_id,
                role,
                expected_updated_at,
                actor_id=actor_id,
                payload=payload,
            )

        try:
            self._check_role(TransitionKind.SAVE_DRAFT, role)
            form = self.db.get(FormDefinition, form_id) if form_id is not None else None
            if form is None:
                raise TransitionRejected(ErrorKind.NOT_FOUND, "Form definition not found")
            if study_id is not None and study_id != form.study_id:
                raise TransitionRejected(
                    ErrorKind.PRECONDITION, "Form definition belongs to another study"
                )
            if not participant_id:
                raise TransitionRejected(ErrorKind.PRECONDITION, "Participant is required")
            self._check_payload(payload)
        except TransitionRejected as e:
            logger.info(f"Draft creation rejected: {e.error.message}")
            return TransitionResult.failure(e.error)

        response = FormResponse(
            study_id=form.study_id,
            participant_id=participant_id,
            form_id=form.id,
            data=payload,
            status=ResponseStatus.DRAFT.value,
            created_by=actor_id,
            updated_at=next_token(None),
        )
        try:
            self.db.add(response)
            self.db.flush()
            AuditTrail.record(
                self.db,
                table_name=FormResponse.__tablename__,
                record_id=response.id,
                action="create",
                actor_id=actor_id,
                new_status=ResponseStatus.DRAFT.value,
                new_data=payload,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create response: {e}", extra={"form_id": form_id})
            raise LifecycleStorageError(f"Failed to create response: {e}") from e

        self.db.refresh(response)
        logger.info(
            f"Created draft response {response.id}",
            extra={"response_id": response.id, "study_id": response.study_id, "actor_id": actor_id},
        )
        return TransitionResult.success(response)

    def transition(
        self,
        kind: Union[TransitionKind, str],
        response_id: int,
        role: Optional[str],
        expected_updated_at: Token,
        *,
        actor_id: str,
        payload: Any = None,
        reason: Optional[str] = None,
        meaning: Optional[str] = None,
        credential: Optional[str] = None,
    ) -> TransitionResult:
        """Apply a lifecycle transition to a stored response.

        Args:
            kind: Transition to apply
            response_id: Response to transition
            role: Caller's study role
            expected_updated_at: ``updated_at`` the caller last read
            actor_id: Caller's user id
            payload: New payload (save_draft, edit_completed; optional for submit)
            reason: Reason for change (unlock, edit_completed)
            meaning: What a signature attests to (sign)
            credential: Signing credential for re-authentication (sign)

        Returns:
            TransitionResult with the refreshed response on success

        Raises:
            LifecycleStorageError: If the database fails during the write
        """
        try:
            kind = TransitionKind(kind)
        except ValueError:
            return TransitionResult.failure(LifecycleError(
                kind=ErrorKind.PRECONDITION, message=f"Unknown transition: {kind}"
            ))

        rule = TRANSITIONS[kind]
        log_extra = {"response_id": response_id, "actor_id": actor_id}

        try:
            self._check_role(kind, role)
            response = self._load(response_id)
            log_extra["study_id"] = response.study_id
            clean_reason = self._check_inputs(kind, rule, response, actor_id, reason, meaning, credential)
            self._check_state(kind, rule, response)
            self._check_token(rule, response, expected_updated_at)
            new_data = self._resolve_payload(kind, rule, response, payload)
        except TransitionRejected as e:
            log = logger.warning if e.error.kind == ErrorKind.PERMISSION else logger.info
            log(f"Transition {kind.value} rejected: {e.error.message}", extra=log_extra)
            return TransitionResult.failure(e.error)

        return self._apply(kind, rule, response, actor_id, role, new_data, clean_reason, meaning, log_extra)

    # ------------------------------------------------------------------
    # Checks

    def _check_role(self, kind: TransitionKind, role: Optional[str]) -> None:
        permission = TRANSITIONS[kind].permission
        if not has_permission(role, permission):
            allowed = ", ".join(roles_with(permission))
            raise TransitionRejected(
                ErrorKind.PERMISSION,
                f"Role '{role}' may not {kind.value.replace('_', ' ')} (requires {allowed})",
            )

    def _load(self, response_id: int) -> FormResponse:
        response = self.db.get(FormResponse, response_id, populate_existing=True)
        if response is None:
            raise TransitionRejected(ErrorKind.NOT_FOUND, "Form response not found")
        return response

    def _check_inputs(
        self,
        kind: TransitionKind,
        rule: TransitionRule,
        response: FormResponse,
        actor_id: str,
        reason: Optional[str],
        meaning: Optional[str],
        credential: Optional[str],
    ) -> Optional[str]:
        clean_reason = reason.strip() if isinstance(reason, str) else None

        if rule.needs_reason:
            min_length = get_settings().min_reason_length
            if not clean_reason or len(clean_reason) < min_length:
                raise TransitionRejected(
                    ErrorKind.PRECONDITION,
                    f"A reason for change is required (minimum {min_length} characters)",
                )

        if kind == TransitionKind.SIGN:
            if not isinstance(meaning, str) or not meaning.strip():
                raise TransitionRejected(ErrorKind.PRECONDITION, "Signature meaning is required")
            if not self.credential_verifier.verify(response.study_id, actor_id, credential):
                raise TransitionRejected(
                    ErrorKind.PRECONDITION,
                    "Authentication failed. Please check your credential.",
                )

        return clean_reason or None

    def _check_state(self, kind: TransitionKind, rule: TransitionRule, response: FormResponse) -> None:
        if response.status not in {status.value for status in rule.sources}:
            allowed = ", ".join(sorted(status.value for status in rule.sources))
            raise TransitionRejected(
                ErrorKind.PRECONDITION,
                f"Cannot {kind.value.replace('_', ' ')} a response in status "
                f"'{response.status}' (allowed from: {allowed})",
            )

    def _check_token(self, rule: TransitionRule, response: FormResponse, expected: Token) -> None:
        if expected is None or expected == "":
            if rule.token_optional:
                return
            raise TransitionRejected(
                ErrorKind.PRECONDITION, "The updatedAt value last read is required"
            )
        try:
            expected_at = parse_token(expected)
        except (TypeError, ValueError):
            raise TransitionRejected(ErrorKind.PRECONDITION, "Invalid updatedAt value")

        if expected_at != parse_token(response.updated_at):
            raise TransitionRejected(ErrorKind.CONFLICT, CONFLICT_MESSAGE, retryable=True)

    def _check_payload(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise TransitionRejected(ErrorKind.PRECONDITION, "Payload must be an object")

    def _resolve_payload(
        self,
        kind: TransitionKind,
        rule: TransitionRule,
        response: FormResponse,
        payload: Any,
    ) -> dict:
        if rule.replaces_payload:
            self._check_payload(payload)
            return payload

        if kind != TransitionKind.SUBMIT:
            return response.data

        data = response.data if payload is None else payload
        self._check_payload(data)

        compiled = compile_validator(response.form.schema_json)
        if not compiled.ok:
            raise TransitionRejected(
                ErrorKind.VALIDATION,
                "Form schema is invalid",
                field_errors=[FieldError(e.path, e.message) for e in compiled.errors],
            )

        data = apply_calculated_values(compiled.validator.schema, data)
        result = compiled.validator.validate(data)
        if not result.valid:
            raise TransitionRejected(
                ErrorKind.VALIDATION,
                f"{len(result.errors)} field(s) failed validation",
                field_errors=result.errors,
            )
        return data

    # ------------------------------------------------------------------
    # Write

    def _apply(
        self,
        kind: TransitionKind,
        rule: TransitionRule,
        response: FormResponse,
        actor_id: str,
        role: Optional[str],
        new_data: dict,
        reason: Optional[str],
        meaning: Optional[str],
        log_extra: dict,
    ) -> TransitionResult:
        old_status = response.status
        old_data = response.data
        new_status = rule.target.value if rule.target else old_status
        now = next_token(response.updated_at)

        values: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_data is not old_data:
            values["data"] = new_data
        if rule.stamp:
            values[f"{rule.stamp}_by"] = actor_id
            values[f"{rule.stamp}_at"] = now
        if rule.clears_lock:
            values["locked_by"] = None
            values["locked_at"] = None
        if kind == TransitionKind.SIGN:
            values["signed_at"] = now

        try:
            if kind == TransitionKind.SIGN and self._already_signed(response, actor_id, meaning):
                raise TransitionRejected(
                    ErrorKind.PRECONDITION,
                    "You have already signed this form with this meaning",
                )

            result = self.db.execute(
                update(FormResponse)
                .where(
                    FormResponse.id == response.id,
                    FormResponse.status == old_status,
                    FormResponse.updated_at == response.updated_at,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.info(f"Transition {kind.value} lost the update race", extra=log_extra)
                return TransitionResult.failure(LifecycleError(
                    kind=ErrorKind.CONFLICT, message=CONFLICT_MESSAGE, retryable=True
                ))

            AuditTrail.record(
                self.db,
                table_name=FormResponse.__tablename__,
                record_id=response.id,
                action=kind.value,
                actor_id=actor_id,
                old_status=old_status,
                new_status=new_status,
                old_data=old_data,
                new_data=new_data,
                reason=reason,
            )

            if kind == TransitionKind.SIGN:
                member = get_member(self.db, response.study_id, actor_id)
                self.db.add(Signature(
                    response_id=response.id,
                    signer_id=actor_id,
                    signer_name=(member.display_name if member and member.display_name else actor_id),
                    signer_role=role,
                    meaning=meaning.strip(),
                    signed_at=now,
                ))

            self.db.commit()
        except TransitionRejected as e:
            self.db.rollback()
            logger.info(f"Transition {kind.value} rejected: {e.error.message}", extra=log_extra)
            return TransitionResult.failure(e.error)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Transition {kind.value} failed: {e}", extra=log_extra)
            raise LifecycleStorageError(f"Failed to apply {kind.value}: {e}") from e

        self.db.refresh(response)
        logger.info(f"Response {old_status} -> {new_status} via {kind.value}", extra=log_extra)
        return TransitionResult.success(response)

    def _already_signed(self, response: FormResponse, signer_id: str, meaning: Optional[str]) -> bool:
        """Whether the signer already attested this meaning since the last lock."""
        query = select(Signature.id).where(
            Signature.response_id == response.id,
            Signature.signer_id == signer_id,
            Signature.meaning == (meaning or "").strip(),
        )
        if response.locked_at is not None:
            query = query.where(Signature.signed_at >= response.locked_at)
        return self.db.execute(query).first() is not None
