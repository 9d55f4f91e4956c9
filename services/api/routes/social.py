"""Social account endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.config import get_config
from services.publisher.accounts import SocialAccountService

from ..deps import get_social_service, get_user_id

router = APIRouter(prefix="/api/social", tags=["social"])


class ConnectRequest(BaseModel):
    platform: Optional[str] = None
    redirect_url: Optional[str] = None


class CallbackRequest(BaseModel):
    platform: Optional[str] = None
    profile: Optional[str] = None


@router.get("/accounts")
async def list_accounts(user_id: str = Depends(get_user_id), social: SocialAccountService = Depends(get_social_service)):
    return {"accounts": await social.list_accounts(user_id)}


@router.post("/connect")
async def connect(
    request: ConnectRequest,
    user_id: str = Depends(get_user_id),
    social: SocialAccountService = Depends(get_social_service),
):
    redirect_url = request.redirect_url or f"{get_config().cors_origin}/social/callback?platform={request.platform}"
    auth_url = await social.connect(user_id, request.platform, redirect_url)
    return {"authUrl": auth_url}


@router.post("/callback")
async def callback(
    request: CallbackRequest,
    user_id: str = Depends(get_user_id),
    social: SocialAccountService = Depends(get_social_service),
):
    account = await social.handle_callback(user_id, request.platform, request.profile)
    return {"message": "Account connected successfully", "account": account}


@router.delete("/accounts/{account_id}")
async def disconnect(
    account_id: str,
    user_id: str = Depends(get_user_id),
    social: SocialAccountService = Depends(get_social_service),
):
    await social.disconnect(account_id, user_id)
    return {"message": "Account disconnected successfully"}


@router.get("/accounts/{account_id}/status")
async def account_status(
    account_id: str,
    user_id: str = Depends(get_user_id),
    social: SocialAccountService = Depends(get_social_service),
):
    return {"account": await social.get_account(account_id, user_id)}


@router.get("/profile")
async def profile(user_id: str = Depends(get_user_id), social: SocialAccountService = Depends(get_social_service)):
    return {"profile": await social.get_profile(user_id)}


@router.get("/analytics")
async def analytics(
    platforms: Optional[str] = Query(None, description="Comma-separated platforms; defaults to connected ones"),
    user_id: str = Depends(get_user_id),
    social: SocialAccountService = Depends(get_social_service),
):
    wanted = [p.strip() for p in platforms.split(",") if p.strip()] if platforms else None
    return {"analytics": await social.get_analytics(user_id, wanted)}
