"""
Request dependencies.

The caller is identified by the X-User-Id header set by the fronting
gateway. Services are process-wide singletons; tests swap them through
``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Header, HTTPException

from services.automation.service import AutomationService
from services.plans.service import PlanService
from services.publisher.accounts import SocialAccountService
from services.publisher.distribution import DistributionService
from services.workspace.preferences import PreferencesService
from services.workspace.prompts import PromptLibrary

_plan_service: Optional[PlanService] = None
_automation: Optional[AutomationService] = None
_distribution: Optional[DistributionService] = None
_social: Optional[SocialAccountService] = None
_preferences: Optional[PreferencesService] = None
_prompts: Optional[PromptLibrary] = None


async def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_plan_service() -> PlanService:
    global _plan_service
    if _plan_service is None:
        _plan_service = PlanService()
    return _plan_service


def get_distribution_service() -> DistributionService:
    global _distribution
    if _distribution is None:
        _distribution = DistributionService()
    return _distribution


def get_automation_service() -> AutomationService:
    global _automation
    if _automation is None:
        _automation = AutomationService(plans=get_plan_service(), distribution=get_distribution_service())
    return _automation


def get_social_service() -> SocialAccountService:
    global _social
    if _social is None:
        _social = SocialAccountService()
    return _social


def get_preferences_service() -> PreferencesService:
    global _preferences
    if _preferences is None:
        _preferences = PreferencesService()
    return _preferences


def get_prompt_library() -> PromptLibrary:
    global _prompts
    if _prompts is None:
        _prompts = PromptLibrary()
    return _prompts
