from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import OAuth2PasswordBearer

from ..container import Services
from ..models.donor import Donor
from ..models.hospital import Hospital
from ..models.user import HOSPITAL_ROLES, UserPublic, UserRole
from ..utils.security import TokenError, decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


ServicesDep = Annotated[Services, Depends(get_services)]


async def get_current_user(services: ServicesDep, token: str | None = Security(oauth2_scheme)) -> UserPublic:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access denied. No token provided.")
    try:
        payload = decode_token(token)
    except TokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user = await services.users.get(payload.get("sub") or "")
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token. User not found.")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is deactivated.")
    return user.public()


def require_roles(*roles: UserRole):
    def dependency(user: UserPublic = Depends(get_current_user)) -> UserPublic:
        if roles and user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(roles)}",
            )
        return user

    return dependency


CurrentUser = Annotated[UserPublic, Depends(get_current_user)]
HospitalUser = Annotated[UserPublic, Depends(require_roles(*HOSPITAL_ROLES, "admin"))]
DonorUser = Annotated[UserPublic, Depends(require_roles("donor"))]
AdminUser = Annotated[UserPublic, Depends(require_roles("admin"))]


async def get_current_hospital(user: HospitalUser, services: ServicesDep) -> Hospital:
    hospital = await services.hospitals.get_by_user(user.id)
    if hospital is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hospital profile not found")
    return hospital


async def get_verified_hospital(hospital: Annotated[Hospital, Depends(get_current_hospital)]) -> Hospital:
    if hospital.verification_status != "verified" or not hospital.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Hospital verification required. Current status: {hospital.verification_status}",
        )
    return hospital


async def get_current_donor(user: DonorUser, services: ServicesDep) -> Donor:
    donor = await services.donors.get_by_user(user.id)
    if donor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Donor profile not found")
    return donor


CurrentHospital = Annotated[Hospital, Depends(get_current_hospital)]
VerifiedHospital = Annotated[Hospital, Depends(get_verified_hospital)]
CurrentDonor = Annotated[Donor, Depends(get_current_donor)]
