from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger

from ..models.user import AuthResponse, User, UserCreate, UserPublic
from ..utils.security import create_access_token, hash_password, verify_password
from .deps import CurrentUser, ServicesDep

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register_user(payload: UserCreate, services: ServicesDep) -> AuthResponse:
    if await services.users.get_by_email(payload.email):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    user = User(
        email=payload.email,
        name=payload.name,
        password=hash_password(payload.password),
        role=payload.role,
        phone_number=payload.phone_number,
        created_at=services.clock.now(),
    )
    await services.users.insert(user)
    logger.info("Registered {} account {}", user.role, user.id)
    return AuthResponse(
        access_token=create_access_token(user.id, user.role),
        user=user.public(),
        message="User registered successfully",
    )


@router.post("/login", response_model=AuthResponse)
async def login_user(services: ServicesDep, form_data: OAuth2PasswordRequestForm = Depends()) -> AuthResponse:
    user = await services.users.get_by_email(form_data.username)
    if user is None or not verify_password(form_data.password, user.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated.")
    now = services.clock.now()
    await services.users.record_login(user.id, now)
    user.last_login = now
    return AuthResponse(access_token=create_access_token(user.id, user.role), user=user.public(), message="Welcome back")


@router.get("/me", response_model=UserPublic)
async def read_current_user(user: CurrentUser) -> UserPublic:
    return user
