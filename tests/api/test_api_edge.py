"""
Cross-cutting HTTP behaviour: authentication, error bodies, request ids,
health.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from oa_api.auth import ALGORITHM, bearer_token, decode_token, issue_token
from oa_kernel.exceptions import UnauthenticatedError


class TestTokens:

    def test_round_trip(self, jwt_secret):
        assert decode_token(issue_token(7, jwt_secret), jwt_secret) == 7

    def test_wrong_secret(self, jwt_secret):
        with pytest.raises(UnauthenticatedError):
            decode_token(issue_token(7, "other"), jwt_secret)

    def test_expired(self, jwt_secret):
        old = datetime.now(timezone.utc) - timedelta(days=2)
        with pytest.raises(UnauthenticatedError, match="expired"):
            decode_token(issue_token(7, jwt_secret, expire_seconds=60, now=old), jwt_secret)

    @pytest.mark.parametrize("subject", ["0", "-3", "alice", ""])
    def test_placeholder_subject(self, jwt_secret, subject):
        token = jwt.encode(
            {"sub": subject, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            jwt_secret,
            algorithm=ALGORITHM,
        )
        with pytest.raises(UnauthenticatedError):
            decode_token(token, jwt_secret)

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "token"])
    def test_malformed_authorization_header(self, header):
        with pytest.raises(UnauthenticatedError):
            bearer_token(header)


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get("/api/todos")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == "UNAUTHENTICATED"

    def test_garbage_token(self, client):
        response = client.get("/api/todos", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_inactive_user_cannot_submit(self, client, auth, org, make_flow, node):
        make_flow([node.fixed(org.ceo, 1)])
        response = client.post(
            "/api/approvals/leave", json={"title": "Leave"}, headers=auth(org.erin),
        )
        assert response.status_code == 401


class TestErrorBodies:

    def test_kernel_error_shape(self, client, auth, org):
        response = client.get("/api/approvals/4242", headers=auth(org.alice))
        assert response.status_code == 404
        body = response.json()
        assert set(body) == {"error"}
        assert set(body["error"]) == {"code", "message"}
        assert body["error"]["code"] == "NOT_FOUND"

    def test_validation_error_is_invalid_input(self, client, auth, org):
        response = client.get("/api/approvals/not-a-number", headers=auth(org.alice))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_bad_page_size(self, client, auth, org):
        response = client.get("/api/todos?page_size=1000", headers=auth(org.alice))
        assert response.status_code == 400


class TestRequestContext:

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 32

    def test_request_failures_are_logged(self, client, captured_logs):
        client.get("/api/todos")
        failures = [r for r in captured_logs() if r["message"] == "request_failed"]
        assert failures
        assert failures[-1]["error_code"] == "UNAUTHENTICATED"
        assert failures[-1]["status"] == 401


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
