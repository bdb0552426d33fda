import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import TokenVerifier, get_token_claims, get_token_verifier, require_user
from core.database import get_db
from core.errors import ErrorCode, ErrorMessage, bad_request
from users.schemas import AuthRequest, UpdateProfileSchema
from users.service import upsert_user, user_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])


@router.post("/auth/firebase")
def firebase_login(
    payload: AuthRequest,
    db: Session = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
):
    claims = verifier.verify(payload.idToken)

    if not claims.get("email"):
        raise bad_request(ErrorCode.EMAIL_REQUIRED, ErrorMessage.EMAIL_REQUIRED)

    user = upsert_user(db, claims, payload.role)
    logger.info("User %s signed in as %s", user.email, user.role)

    body = user_payload(user)
    body.pop("createdAt")
    return {"success": True, "user": body}


#get profile
@router.get("/user/profile")
def get_profile(
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    user = require_user(db, claims)
    return {"success": True, "user": user_payload(user)}


#update profile
@router.put("/user/profile")
def update_profile(
    data: UpdateProfileSchema,
    claims: dict = Depends(get_token_claims),
    db: Session = Depends(get_db),
):
    user = require_user(db, claims)

    if data.name is not None:
        user.name = data.name
    if data.image is not None:
        user.image = data.image

    db.commit()
    db.refresh(user)

    return {"success": True, "user": user_payload(user)}
