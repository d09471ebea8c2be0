"""
Keystone CRM - Modeles Auth
"""

from pydantic import BaseModel


ADMIN_ROLES = ("admin", "super_admin")


class UserLogin(BaseModel):
    email: str
    password: str
