# routers/auth_admin.py

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.db import get_db
from app.passwords import hash_password, verify_password
from app.security import (
    admin_id_from_subject,
    create_admin_token,
    decode_access_token,
    is_admin_subject,
)
from models.admin import Admin
from schemas.admin import AdminCreate, AdminLogin, AdminOut

router = APIRouter(prefix="/admin", tags=["Admin Auth"])

admin_bearer_scheme = HTTPBearer()


# ------------------------------
# POST /admin/login
# ------------------------------
@router.post("/login")
def admin_login(payload: AdminLogin, db: Session = Depends(get_db)):
    admin = (
        db.query(Admin)
        .filter(
            Admin.email == payload.email,
            Admin.is_active == True,  # noqa: E712
        )
        .first()
    )

    # Same message for unknown email and wrong password
    if not admin or not verify_password(payload.password, admin.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin credentials.",
        )

    access_token = create_admin_token(admin.id)

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "admin": AdminOut.model_validate(admin),
    }


# -------------------------------------------------
# Dependency: token must belong to an active admin
# -------------------------------------------------
def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(admin_bearer_scheme),
    db: Session = Depends(get_db),
) -> Admin:
    subject = decode_access_token(credentials.credentials)
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token.",
        )

    if not is_admin_subject(subject):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: not an admin token.",
        )

    admin_id = admin_id_from_subject(subject)
    if admin_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed admin token.",
        )

    admin = (
        db.query(Admin)
        .filter(Admin.id == admin_id, Admin.is_active == True)  # noqa: E712
        .first()
    )
    if not admin:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin not found.",
        )

    return admin


@router.get("/me", response_model=AdminOut)
def admin_me(admin: Admin = Depends(get_current_admin)):
    return admin


# ------------------------------
# POST /admin/admins (superadmin only)
# ------------------------------
@router.post("/admins", response_model=AdminOut, status_code=201)
def create_admin(
    payload: AdminCreate,
    db: Session = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    if not admin.is_superadmin:
        raise HTTPException(status_code=403, detail="Only a superadmin can create admins.")

    if db.query(Admin).filter(Admin.email == payload.email).first():
        raise HTTPException(status_code=409, detail="An admin with this email already exists.")

    new_admin = Admin(
        email=payload.email,
        hashed_password=hash_password(payload.password),
        is_active=True,
        is_superadmin=payload.is_superadmin,
    )
    db.add(new_admin)
    db.commit()
    db.refresh(new_admin)
    return new_admin
