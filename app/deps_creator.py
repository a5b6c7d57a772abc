# app/deps_creator.py
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.db import get_db
from app.security import creator_id_from_subject, decode_access_token
from models.creators import Creator, CreatorStatus

# Authorization: Bearer <token>
oauth2_scheme_creator = OAuth2PasswordBearer(tokenUrl="/creator/login")


def get_current_creator(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme_creator),
) -> Creator:
    """
    Current creator from the JWT. Only tokens whose 'sub' is a numeric
    creator id are accepted; admin tokens ('admin:1') are rejected.
    """
    subject = decode_access_token(token)

    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired creator token.",
        )

    creator_id = creator_id_from_subject(subject)
    if creator_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token not valid for creator access.",
        )

    creator = (
        db.query(Creator)
        .filter(Creator.id == creator_id, Creator.status == CreatorStatus.ACTIVE)
        .first()
    )

    if not creator:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Creator not found or inactive.",
        )

    return creator
