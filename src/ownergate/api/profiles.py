"""Profile API — the reference consumer of the gateway.

Learn: Each handler wraps its storage work in gateway.authorized(), which
runs the full authorize sequence and guarantees cleanup of the security
scope even if the handler raises. A denied request never reaches the
body: AuthorizationFailed is rendered by the app's exception handler.

- GET    /profiles/{user_id}         → read own profile
- POST   /profiles                   → first-time create (bootstrap)
- PATCH  /profiles/{user_id}         → update own profile
- DELETE /profiles/{user_id}         → delete own profile
- POST   /profiles/{user_id}/points  → award points (coalesced write)
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ownergate.gateway.batch import BatchCoalescer
from ownergate.gateway.dependencies import get_coalescer, get_gateway
from ownergate.gateway.facade import Gateway
from ownergate.schemas.profile import (
    PointsAward,
    PointsTotal,
    ProfileCreate,
    ProfileRead,
    ProfileUpdate,
)
from ownergate.services.profile_service import ProfileConflict, ProfileService

router = APIRouter(prefix="/profiles")


@router.get("/{user_id}", response_model=ProfileRead)
async def get_profile(
    user_id: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
):
    async with gateway.authorized(request, user_id, "read") as auth:
        svc = ProfileService(auth.session)
        profile = await svc.get_profile(auth.scope.acting_as_id)
        if not profile:
            raise HTTPException(status_code=404, detail="Profile not found")
        return ProfileRead.model_validate(profile)


@router.post("", response_model=ProfileRead, status_code=201)
async def create_profile(
    body: ProfileCreate,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
):
    """Create the caller's profile. Allowed without a token only while
    no profile exists for the requested owner id."""
    async with gateway.authorized(request, body.user_id, "create") as auth:
        svc = ProfileService(auth.session)
        try:
            profile = await svc.create_profile(
                user_id=auth.scope.acting_as_id,
                display_name=body.display_name,
                email=body.email,
                wallet_address=body.wallet_address,
                bio=body.bio,
            )
        except ProfileConflict:
            raise HTTPException(status_code=409, detail="Profile already exists")
        return ProfileRead.model_validate(profile)


@router.patch("/{user_id}", response_model=ProfileRead)
async def update_profile(
    user_id: str,
    body: ProfileUpdate,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
):
    async with gateway.authorized(request, user_id, "write") as auth:
        svc = ProfileService(auth.session)
        profile = await svc.update_profile(
            auth.scope.acting_as_id, **body.model_dump(exclude_unset=True)
        )
        if not profile:
            raise HTTPException(status_code=404, detail="Profile not found")
        return ProfileRead.model_validate(profile)


@router.delete("/{user_id}", status_code=204)
async def delete_profile(
    user_id: str,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
):
    async with gateway.authorized(request, user_id, "delete") as auth:
        svc = ProfileService(auth.session)
        if not await svc.delete_profile(auth.scope.acting_as_id):
            raise HTTPException(status_code=404, detail="Profile not found")
        return Response(status_code=204)


@router.post("/{user_id}/points", response_model=PointsTotal)
async def award_points(
    user_id: str,
    body: PointsAward,
    request: Request,
    gateway: Gateway = Depends(get_gateway),
    coalescer: BatchCoalescer = Depends(get_coalescer),
):
    async with gateway.authorized(request, user_id, "write") as auth:
        owner_id = auth.scope.acting_as_id
        svc = ProfileService(auth.session)
        try:
            total = await coalescer.submit(
                "user_stats", lambda: svc.add_points(owner_id, body.points)
            )
        except LookupError:
            raise HTTPException(status_code=404, detail="Profile not found")
        return PointsTotal(user_id=owner_id, total_points=total)
