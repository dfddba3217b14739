"""Typed errors raised by the demande workflow.

Every error carries a stable ``code`` so API clients branch on the code, not
on the French message. All of them are raised before any durable mutation.

    WorkflowError
    +-- AuthorizationError          forbidden
    +-- NotFoundError               not_found
    +-- StateError                  invalid_state
    |   +-- MaxRejectionsError      max_rejections_reached
    |   +-- ActiveSubRequestsError  active_sub_requests
    |   +-- SequenceExhaustedError  sequence_exhausted
    +-- WorkflowValidationError     validation_error
    |   +-- RejectionReasonRequiredError   rejection_reason_required
    |   +-- RefusalReasonRequiredError     refusal_reason_required
    +-- ConflictError               stale_state
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for demande workflow errors."""

    code: str = "workflow_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AuthorizationError(WorkflowError):
    code: str = "forbidden"


class NotFoundError(WorkflowError):
    code: str = "not_found"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} introuvable ({entity_id})")


class StateError(WorkflowError):
    """The action is not possible from the current status."""

    code: str = "invalid_state"


class MaxRejectionsError(StateError):
    code: str = "max_rejections_reached"

    def __init__(self, numero: str, limit: int):
        self.numero = numero
        self.limit = limit
        super().__init__(
            f"La demande {numero} a atteint le nombre maximum de rejets ({limit}). "
            "Veuillez créer une nouvelle demande."
        )


class ActiveSubRequestsError(StateError):
    code: str = "active_sub_requests"

    def __init__(self, numero: str, sous_demandes: list[str]):
        self.numero = numero
        self.sous_demandes = sous_demandes
        super().__init__(
            f"La demande {numero} ne peut pas être clôturée: "
            f"sous-demande(s) en cours ({', '.join(sous_demandes)})"
        )


class SequenceExhaustedError(StateError):
    code: str = "sequence_exhausted"


class WorkflowValidationError(WorkflowError):
    """The payload is incomplete or inconsistent."""

    code: str = "validation_error"


class RejectionReasonRequiredError(WorkflowValidationError):
    code: str = "rejection_reason_required"

    def __init__(self):
        super().__init__("Un motif de rejet est obligatoire")


class RefusalReasonRequiredError(WorkflowValidationError):
    code: str = "refusal_reason_required"

    def __init__(self, item_id: object):
        self.item_id = item_id
        super().__init__(f"Un motif de refus est obligatoire pour l'article {item_id}")


class ConflictError(WorkflowError):
    """Another writer changed the demande first; reload and retry."""

    code: str = "stale_state"

    def __init__(self, numero: str, expected_status: str):
        self.numero = numero
        self.expected_status = expected_status
        super().__init__(
            f"La demande {numero} a été modifiée entre-temps (statut attendu: {expected_status}). "
            "Rechargez la demande et réessayez."
        )
