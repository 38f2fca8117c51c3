from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional
from datetime import datetime

class AdminBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    full_name: str = Field(..., min_length=2, max_length=100)
    role: str = Field(default="admin")  # "super_admin" or "admin"
    is_active: bool = Field(default=True)

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v not in ['admin', 'super_admin']:
            raise ValueError('Role must be either "admin" or "super_admin"')
        return v

class AdminCreate(AdminBase):
    password: str = Field(..., min_length=6)

class AdminResponse(BaseModel):
    id: str = Field(alias="_id")
    username: str
    email: str
    full_name: str
    role: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}

class AdminLogin(BaseModel):
    username: str
    password: str

class AdminLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    admin: AdminResponse
