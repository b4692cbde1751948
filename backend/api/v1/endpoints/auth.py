from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from ....core.dependencies import (
    get_db,
    get_current_user,
    get_current_admin_user,
    get_request_context,
    RequestContext,
)
from ....models.user import User
from ....schemas.auth import (
    Token,
    UserCreate,
    UserResponse,
    RefreshToken,
    PasswordChange,
    UserLogin,
)
from ....schemas.base import MessageResponse
from ....services.auth_service import AuthService

router = APIRouter()


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Incorrect username or password",
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: UserCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_current_admin_user)
):
    """
    Create a staff or customer account. Admin only.
    """
    return AuthService(db).create_user(user_data)


@router.post("/login", response_model=Token)
async def login(
    user_credentials: UserLogin,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    """
    User login endpoint
    """
    auth_service = AuthService(db)
    user = auth_service.authenticate_user(
        user_credentials.username,
        user_credentials.password,
        ip_address=context.ip_address,
    )
    if not user:
        raise _invalid_credentials()
    return auth_service.issue_tokens(user)


@router.post("/login/form", response_model=Token)
async def login_form(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context)
):
    """
    OAuth2 compatible login endpoint
    """
    auth_service = AuthService(db)
    user = auth_service.authenticate_user(form_data.username, form_data.password, ip_address=context.ip_address)
    if not user:
        raise _invalid_credentials()
    return auth_service.issue_tokens(user)


@router.post("/refresh", response_model=Token)
async def refresh_token(
    refresh_data: RefreshToken,
    db: Session = Depends(get_db)
):
    """
    Refresh access token using refresh token
    """
    token = AuthService(db).refresh(refresh_data.refresh_token)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token"
        )
    return token


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Logout user and invalidate refresh token
    """
    AuthService(db).revoke_refresh_token(current_user.id)
    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    return current_user


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    password_data: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    AuthService(db).change_password(current_user, password_data.current_password, password_data.new_password)
    return {"message": "Password successfully changed"}


@router.get("/verify-token")
async def verify_access_token(
    current_user: User = Depends(get_current_user)
):
    """
    Verify if access token is valid
    """
    return {
        "valid": True,
        "user_id": current_user.id,
        "username": current_user.username,
        "role": str(current_user.role),
    }
