"""Participant login: alias + secret in, bearer access token out."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from studyflow.api.dependencies import get_identity_provider
from studyflow.repos.identity_repo import ALIAS_ATTRIBUTE, InMemoryIdentityProvider
from studyflow.services import token_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


class LoginIn(BaseModel):
    alias: str = Field(min_length=1, max_length=100)
    secret: str = Field(min_length=1, max_length=200)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: str


@router.post("/login", response_model=TokenOut)
async def login(
    body: LoginIn,
    identities: Annotated[InMemoryIdentityProvider, Depends(get_identity_provider)],
) -> TokenOut:
    identity = await identities.authenticate(body.alias, body.secret)
    if identity is None:
        # Never log the secret; the alias alone is not identifying
        logger.warning("Login failed alias=%s", body.alias)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid alias or secret",
        )

    role = identity.attributes.get("role", "participant")
    token = token_service.create_access_token(sub=str(identity.id), roles=[role])
    logger.info(
        "Login succeeded user=%s alias=%s",
        identity.id,
        identity.attributes.get(ALIAS_ATTRIBUTE),
    )
    return TokenOut(
        access_token=token,
        expires_in=token_service.ACCESS_TOKEN_TTL_MIN * 60,
        user_id=str(identity.id),
    )
