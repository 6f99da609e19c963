from __future__ import annotations

from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from app.api.deps import request_identity as request_identity_module


def _build_app() -> FastAPI:
    app = FastAPI()

    @app.get("/whoami")
    def whoami(request: Request, email: str = Depends(request_identity_module.get_request_email)):
        identity = request_identity_module.resolve_request_identity(request)
        return {"email": email, "source": identity.auth_source}

    return app


def test_x_user_email_is_normalized():
    with TestClient(_build_app()) as client:
        r = client.get("/whoami", headers={"X-User-Email": "  Planner@Example.COM "})
        assert r.status_code == 200
        assert r.json() == {"email": "planner@example.com", "source": "legacy_header"}


def test_x_user_is_used_when_email_header_is_missing():
    with TestClient(_build_app()) as client:
        r = client.get("/whoami", headers={"X-User": "ops@example.com"})
        assert r.json()["email"] == "ops@example.com"


def test_missing_headers_fall_back_to_system_user():
    with TestClient(_build_app()) as client:
        r = client.get("/whoami")
        assert r.json()["email"] == request_identity_module.SYSTEM_EMAIL
