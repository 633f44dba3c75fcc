# wchic/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter

from wchic.schemas.auth import DashboardLoginRequest, LoginRequest, TokenResponse
from wchic.services.auth import authenticate_admin, authenticate_dashboard

router = APIRouter(tags=["auth"])


@router.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest) -> TokenResponse:
    return TokenResponse(access_token=authenticate_admin(payload.username, payload.password))


@router.post("/dash/login", response_model=TokenResponse)
async def dashboard_login(payload: DashboardLoginRequest) -> TokenResponse:
    return TokenResponse(access_token=authenticate_dashboard(payload.password))
