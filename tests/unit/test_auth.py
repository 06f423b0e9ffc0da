"""
Unit tests for bearer token verification
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from classroom.api.auth import create_access_token, decode_token, get_current_principal
from classroom.config import AUTH_JWT_ALGORITHM, AUTH_JWT_SECRET
from classroom.services.phases import Role


class TestDecodeToken:

    def test_round_trip_claims(self):
        principal = decode_token(create_access_token("teacher-9", Role.TEACHER))
        assert principal.user_id == "teacher-9"
        assert principal.role is Role.TEACHER
        assert principal.is_teacher

    def test_wrong_secret_rejected(self):
        token = jwt.encode({"sub": "x", "role": "STUDENT"}, "other-secret", algorithm="HS256")
        with pytest.raises(HTTPException) as exc:
            decode_token(token)
        assert exc.value.status_code == 401
        assert exc.value.detail["error"]["code"] == "AUTH_002"

    def test_expired_token_rejected(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode(
            {"sub": "x", "role": "STUDENT", "exp": past},
            AUTH_JWT_SECRET,
            algorithm=AUTH_JWT_ALGORITHM,
        )
        with pytest.raises(HTTPException):
            decode_token(token)

    @pytest.mark.parametrize("claims", [{"sub": "x"}, {"sub": "x", "role": "ADMIN"}, {"role": "TEACHER"}])
    def test_missing_or_unknown_claims_rejected(self, claims):
        token = jwt.encode(claims, AUTH_JWT_SECRET, algorithm=AUTH_JWT_ALGORITHM)
        with pytest.raises(HTTPException) as exc:
            decode_token(token)
        assert exc.value.detail["error"]["code"] == "AUTH_002"

    async def test_missing_credentials(self):
        with pytest.raises(HTTPException) as exc:
            await get_current_principal(None)
        assert exc.value.detail["error"]["code"] == "AUTH_001"
