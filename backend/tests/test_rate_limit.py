"""Sliding-window rate limiting and the check-rate-limit endpoint."""
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.config import settings
from app.models import RateLimitAttempt, utcnow
from app.services.rate_limit_service import check_rate_limit, evaluate_rate_limit, rule_for


def test_rule_for_falls_back_to_default():
    assert rule_for("login") == (5, 900)
    assert rule_for("something-else") == tuple(settings.rate_limit_rules["default"])


def test_allows_until_limit_then_blocks(db_session):
    results = [check_rate_limit(db_session, "user@example.com", "login") for _ in range(6)]

    assert [r["allowed"] for r in results] == [True] * 5 + [False]
    assert [r["remaining"] for r in results[:5]] == [4, 3, 2, 1, 0]
    assert results[-1]["retry_after"] >= 1
    assert db_session.query(RateLimitAttempt).count() == 5


def test_attempts_outside_window_do_not_count(db_session):
    old = utcnow() - timedelta(seconds=1000)
    for _ in range(5):
        db_session.add(RateLimitAttempt(identifier="ip-1", action="login", details={}, created_at=old))
    db_session.commit()

    assert check_rate_limit(db_session, "ip-1", "login")["allowed"] is True


def test_identifiers_and_actions_are_counted_separately(db_session):
    for _ in range(5):
        check_rate_limit(db_session, "a", "login")
    assert check_rate_limit(db_session, "a", "login")["allowed"] is False
    assert check_rate_limit(db_session, "b", "login")["allowed"] is True
    assert check_rate_limit(db_session, "a", "send_email")["allowed"] is True


def test_blocked_decision_carries_retry_headers(db_session):
    for _ in range(5):
        evaluate_rate_limit(db_session, "a", "login")

    decision = evaluate_rate_limit(db_session, "a", "login", ip_address="10.0.0.1")

    assert decision.status_code == 429
    assert decision.body["error"] == "Rate limit exceeded"
    assert decision.headers["X-RateLimit-Limit"] == "5"
    assert decision.headers["X-RateLimit-Remaining"] == "0"
    assert int(decision.headers["Retry-After"]) >= 1


def test_storage_failure_allows_request(db_session):
    boom = OperationalError("SELECT", {}, Exception("database is locked"))
    with patch("app.services.rate_limit_service.check_rate_limit", side_effect=boom):
        decision = evaluate_rate_limit(db_session, "a", "login")

    assert decision.status_code == 200
    assert decision.body["allowed"] is True
    assert decision.body["warning"] == "Rate limit check failed, allowing by default"


def test_check_rate_limit_endpoint(client, db_session, anon_headers):
    headers = {**anon_headers, "X-Forwarded-For": "203.0.113.9", "User-Agent": "pytest"}
    r = client.post(
        "/api/functions/check-rate-limit",
        json={"identifier": "user@example.com", "action": "login", "metadata": {"source": "form"}},
        headers=headers,
    )

    assert r.status_code == 200
    assert r.json()["allowed"] is True
    assert r.headers["X-RateLimit-Remaining"] == "4"
    details = db_session.query(RateLimitAttempt).one().details
    assert details["ip_address"] == "203.0.113.9"
    assert details["user_agent"] == "pytest"
    assert details["source"] == "form"


def test_forwarded_chain_records_originating_client(client, db_session, anon_headers):
    headers = {**anon_headers, "X-Forwarded-For": "198.51.100.7, 10.0.0.2, 10.0.0.3"}
    r = client.post(
        "/api/functions/check-rate-limit",
        json={"identifier": "user@example.com", "action": "login"},
        headers=headers,
    )

    assert r.status_code == 200
    assert db_session.query(RateLimitAttempt).one().details["ip_address"] == "198.51.100.7"


def test_check_rate_limit_endpoint_requires_fields(client, anon_headers):
    r = client.post("/api/functions/check-rate-limit", json={"action": "login"}, headers=anon_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "identifier and action are required"}
