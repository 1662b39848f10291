from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated user from a Supabase JWT.

    ``role`` is the Postgres role Supabase puts on the token (``authenticated``
    or ``service_role``); marketplace roles (buyer, vendor, admin) live in
    ``app_metadata``.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    app_metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def roles(self) -> set[str]:
        roles = set(self.app_metadata.get("roles") or [])
        primary = self.app_metadata.get("role")
        if primary:
            roles.add(primary)
        if not roles:
            roles.add("buyer")
        return roles

    @property
    def is_service(self) -> bool:
        return self.role == "service_role"

    @property
    def is_admin(self) -> bool:
        return self.is_service or "admin" in self.roles

    @property
    def is_vendor(self) -> bool:
        return "vendor" in self.roles
