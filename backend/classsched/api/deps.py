from collections.abc import Callable, Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from classsched.core.exceptions import PermissionDeniedError
from classsched.core.security import decode_token
from classsched.db.session import SessionLocal
from classsched.models.user import User, UserRole
from classsched.services.notifications import Notifier, get_notifier

security = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    try:
        payload = decode_token(credentials.credentials)
    except JWTError as exc:
        raise _unauthorized() from exc

    user_id = payload.get("sub")
    user = db.get(User, user_id) if user_id else None
    if user is None:
        raise _unauthorized()
    # Reviewer rights are decided from the role in the database; a token minted
    # for an older role has to be reissued.
    if payload.get("role") != user.role.value:
        raise _unauthorized("Token role no longer matches the account")
    if not user.is_active:
        raise PermissionDeniedError("User account is inactive")
    return user


def require_roles(*roles: UserRole) -> Callable[[User], User]:
    allowed_roles = frozenset(roles)

    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise PermissionDeniedError(
                "Insufficient permissions",
                details={
                    "role": current_user.role.value,
                    "required_roles": sorted(role.value for role in allowed_roles),
                },
            )
        return current_user

    return role_checker


def get_request_notifier() -> Notifier:
    return get_notifier()
