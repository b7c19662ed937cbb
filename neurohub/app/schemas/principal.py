"""
app/schemas/principal.py
Roles and the Principal model.
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

Role = Literal["user", "doctor", "admin"]
PrincipalRole = Literal["guest", "user", "doctor", "admin"]

class Principal(BaseModel):
    uid: str = Field(..., description="Firebase UID")
    role: PrincipalRole = Field(..., description="guest | user | doctor | admin")
    email: Optional[str] = Field(None, description="Email (if any)")
    email_verified: bool = Field(False, description="Firebase emailVerified flag")
    display_name: Optional[str] = Field(None, description="Display name (if any)")
