from pydantic import BaseModel, EmailStr


class CreatorLoginRequest(BaseModel):
    email: EmailStr
    discount_code: str  # second factor: the creator's own code


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
