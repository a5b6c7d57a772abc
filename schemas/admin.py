# schemas/admin.py

from pydantic import BaseModel, EmailStr, Field


class AdminLogin(BaseModel):
    email: EmailStr
    password: str


class AdminOut(BaseModel):
    id: int
    email: EmailStr
    is_active: bool
    is_superadmin: bool

    class Config:
        from_attributes = True


# Created by a superadmin from the admin panel
class AdminCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    is_superadmin: bool = False
