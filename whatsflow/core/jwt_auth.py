# whatsflow/core/jwt_auth.py
"""
JWT Authentication for management API access.
Validates Bearer tokens issued by the dashboard backend.
"""
import jwt
from typing import Optional, Dict, Any
from fastapi import HTTPException

from whatsflow.core.config import JWT_SECRET_KEY, JWT_ALGORITHM

USER_ID_CLAIMS = ("user_id", "sub", "id")


class JWTAuth:
    """Bearer token checks for the rules/flows/conversations API"""

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """
        Verify signature and expiry, return the claims.

        Raises:
            HTTPException(401): JWT_SECRET_KEY unset, token expired or tampered with
        """
        if not JWT_SECRET_KEY:
            raise HTTPException(status_code=401, detail="JWT authentication is not configured")

        try:
            return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token has expired")
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def get_user_id(payload: Dict[str, Any]) -> Optional[str]:
        """Owning user from the first claim present in USER_ID_CLAIMS"""
        for claim in USER_ID_CLAIMS:
            if payload.get(claim):
                return str(payload[claim])
        return None
