from fastapi import APIRouter, Depends

from order_api.dependencies import get_auth_context
from order_api.services.identity import AuthContext, UserInfo, get_user_info

router = APIRouter()


@router.get("/info", response_model=UserInfo)
async def user_info(context: AuthContext = Depends(get_auth_context)) -> UserInfo:
    return get_user_info(context)
