from pydantic import BaseModel, ConfigDict


class SessionUser(BaseModel):
    """Signed-in user, passed explicitly into the chat core."""

    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: str = ""
    role: str = "teacher"
    phone_number: str | None = None
    email: str | None = None
    preferred_language: str | None = None

    @property
    def is_admin_or_principal(self) -> bool:
        return self.role in ("admin", "principal")


class AuthSession(BaseModel):
    """Bearer token plus the user it belongs to."""

    user: SessionUser
    token: str | None = None

    @property
    def has_token(self) -> bool:
        return bool(self.token)
