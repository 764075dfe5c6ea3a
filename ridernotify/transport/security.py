# ridernotify/transport/security.py
"""
Admin authentication for the dispatch endpoints.

- Bearer token in the Authorization header (never a query parameter)
- Constant-time comparison
- Startup warnings for weak tokens
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ridernotify.infra.logging_config import get_logger

logger = get_logger(__name__)

# Minimum token length for security (32 bytes = 256 bits)
MIN_TOKEN_LENGTH = 32
WEAK_TOKEN_PATTERNS = [
    "password", "secret", "token", "admin", "test", "demo",
    "123456", "000000", "111111", "aaaaaa",
]

# Security scheme for OpenAPI docs - shows "Authorize" button
bearer_scheme = HTTPBearer(
    scheme_name="Admin Token",
    description="Enter your admin token (without 'Bearer ' prefix)",
    auto_error=False,
)


def validate_token_strength(token: str, token_name: str = "token") -> list[str]:
    """
    Returns list of warnings (empty if token is strong).

    Checks minimum length, common weak patterns, and character variety.
    """
    warnings = []

    if len(token) < MIN_TOKEN_LENGTH:
        warnings.append(
            f"{token_name} is too short ({len(token)} chars). "
            f"Minimum recommended: {MIN_TOKEN_LENGTH} chars."
        )

    token_lower = token.lower()
    for pattern in WEAK_TOKEN_PATTERNS:
        if pattern in token_lower:
            warnings.append(f"{token_name} contains weak pattern '{pattern}'.")
            break

    if len(set(token)) < 10:
        warnings.append(f"{token_name} has low character variety ({len(set(token))} unique chars).")

    return warnings


def require_admin_token(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
):
    """
    Dependency that requires a valid admin token via Authorization Bearer header.

    Usage:
        @app.post("/admin/dispatch", dependencies=[Depends(require_admin_token)])

    Client example:
        curl -H "Authorization: Bearer $ADMIN_TOKEN" -X POST http://localhost:8000/admin/dispatch
    """
    admin_token = request.app.state.settings.admin_token
    if not admin_token:
        logger.critical("ADMIN_TOKEN not configured but admin endpoint accessed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable"
        )

    if not credentials:
        logger.warning("Admin endpoint accessed without authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials.encode(), admin_token.encode()):
        logger.warning("Invalid admin token attempt", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
