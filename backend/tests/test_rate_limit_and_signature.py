import uuid
from datetime import datetime, timedelta, timezone

from fastapi import status

from gestion_demandes.api.errors import http_error
from gestion_demandes.core.rate_limit import LoginAttemptLimiter
from gestion_demandes.services.mailer import _generer_corps_mail, _split_emails
from gestion_demandes.services.signature import generate_signature
from gestion_demandes.workflow.errors import (
    ActiveSubRequestsError,
    AuthorizationError,
    ConflictError,
    MaxRejectionsError,
    NotFoundError,
    RejectionReasonRequiredError,
)


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def test_limiter_locks_after_max_attempts_and_unlocks_after_lockout():
    clock = FakeClock()
    limiter = LoginAttemptLimiter(max_attempts=3, lockout=timedelta(minutes=15), clock=clock)

    for _ in range(2):
        assert limiter.check("a@example.com")
        limiter.record("a@example.com")
    assert limiter.check("a@example.com")
    limiter.record("a@example.com")
    assert not limiter.check("a@example.com")
    assert limiter.check("b@example.com")

    clock.now += timedelta(minutes=16)
    assert limiter.check("a@example.com")


def test_limiter_reset_clears_failures():
    limiter = LoginAttemptLimiter(max_attempts=2, lockout=timedelta(minutes=5), clock=FakeClock())
    limiter.record("a")
    limiter.reset("a")
    limiter.record("a")
    assert limiter.check("a")


def test_old_failures_fall_out_of_the_window():
    clock = FakeClock()
    limiter = LoginAttemptLimiter(max_attempts=2, lockout=timedelta(minutes=5), clock=clock)
    limiter.record("a")
    clock.now += timedelta(minutes=10)
    limiter.record("a")
    assert limiter.check("a")


def test_signature_is_stable_for_identical_input():
    user_id = uuid.uuid4()
    ts = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    first = generate_signature(user_id=user_id, action="valider", timestamp=ts, data={"b": 1, "a": 2})
    second = generate_signature(user_id=user_id, action="valider", timestamp=ts, data={"a": 2, "b": 1})
    assert first == second
    assert len(first) == 64
    assert first != generate_signature(user_id=user_id, action="rejet", timestamp=ts, data={"a": 2, "b": 1})


def test_workflow_errors_map_to_http_statuses():
    cases = [
        (AuthorizationError("non"), status.HTTP_403_FORBIDDEN, "forbidden"),
        (NotFoundError("Demande", "x"), status.HTTP_404_NOT_FOUND, "not_found"),
        (ConflictError("DA-MAT-2026-0001", "soumise"), status.HTTP_409_CONFLICT, "stale_state"),
        (MaxRejectionsError("DA-MAT-2026-0001", 3), status.HTTP_409_CONFLICT, "max_rejections_reached"),
        (ActiveSubRequestsError("DA", ["DA-SD1"]), status.HTTP_409_CONFLICT, "active_sub_requests"),
        (RejectionReasonRequiredError(), status.HTTP_422_UNPROCESSABLE_ENTITY, "rejection_reason_required"),
    ]
    for exc, expected_status, code in cases:
        http_exc = http_error(exc)
        assert http_exc.status_code == expected_status
        assert http_exc.detail["code"] == code


def test_mail_helpers():
    assert _split_emails("a@x.com; b@x.com,\nc@x.com") == ["a@x.com", "b@x.com", "c@x.com"]
    assert _split_emails(None) == []
    body = _generer_corps_mail(titre="Demande rejetée", message="Motif: test", numero="DA-MAT-2026-0001")
    assert "DA-MAT-2026-0001" in body
    assert body.startswith("Bonjour,")
