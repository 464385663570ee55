from app.schemas.base import ApiModel
from app.services.access_roles import AccessRole


class CurrentUserResponse(ApiModel):
    id: str
    external_id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    role: AccessRole
