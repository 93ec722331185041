from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from warden.api.auth import require_principal
from warden.api.dependencies import RateLimit
from warden.core.classifier import Principal, resolve_role
from warden.core.policy import Tier


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    storage: str


class LoginRequest(BaseModel):
    api_key: str


class UserResponse(BaseModel):
    id: str
    role: str


def _user(principal: Principal) -> UserResponse:
    return UserResponse(id=principal.id, role=resolve_role(principal).value)


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        storage=request.app.state.settings.storage_backend.value,
    )


# Public API routes with tight rate limiting
public_auth = APIRouter(
    prefix="/v1/auth",
    dependencies=[Depends(RateLimit(Tier.PUBLIC, "auth"))],
)


@public_auth.post("/login", response_model=UserResponse)
async def login(payload: LoginRequest, request: Request):
    principal = request.app.state.principals.get(payload.api_key)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials.",
        )
    return _user(principal)


public_general = APIRouter(
    prefix="/v1",
    dependencies=[Depends(RateLimit(Tier.PUBLIC, "general"))],
)


@public_general.get("/public/info")
async def public_info():
    return {"message": "Public information"}


public_search = APIRouter(
    prefix="/v1",
    dependencies=[Depends(RateLimit(Tier.PUBLIC, "search"))],
)


@public_search.get("/search")
async def search():
    return {"results": []}


# Authenticated routes with role-based rate limiting
def _authenticated(category: str, prefix: str = "/v1") -> APIRouter:
    return APIRouter(
        prefix=prefix,
        dependencies=[
            Depends(require_principal),
            Depends(RateLimit(Tier.AUTHENTICATED, category)),
        ],
    )


auth_general = _authenticated("general")


@auth_general.get("/auth/me", response_model=UserResponse)
async def me(principal: Principal = Depends(require_principal)):
    return _user(principal)


@auth_general.post("/auth/logout")
async def logout():
    return {"message": "Logged out"}


@auth_general.get("/profile", response_model=UserResponse)
async def profile(principal: Principal = Depends(require_principal)):
    return _user(principal)


auth_search = _authenticated("search")


@auth_search.get("/search/advanced")
async def advanced_search():
    return {"results": []}


auth_upload = _authenticated("upload")


@auth_upload.post("/upload")
async def upload():
    return {"message": "File uploaded"}


auth_heavy = _authenticated("heavy")


@auth_heavy.get("/reports/generate")
async def generate_report():
    return {"message": "Report generated"}


@auth_heavy.post("/export/data")
async def export_data():
    return {"message": "Data exported"}


# Admin routes; the admin tier also rejects non-admin principals
def _admin(category: str) -> APIRouter:
    return APIRouter(
        prefix="/v1/admin",
        dependencies=[
            Depends(require_principal),
            Depends(RateLimit(Tier.ADMIN, category)),
        ],
    )


admin_general = _admin("general")


@admin_general.get("/dashboard")
async def dashboard():
    return {"message": "Admin dashboard"}


admin_users = _admin("users")


@admin_users.get("/users")
async def list_users():
    return {"users": []}


@admin_users.post("/users")
async def create_user():
    return {"message": "User created"}


@admin_users.put("/users/{user_id}")
async def update_user(user_id: str):
    return {"message": "User updated", "id": user_id}


@admin_users.delete("/users/{user_id}")
async def delete_user(user_id: str):
    return {"message": "User deleted", "id": user_id}


admin_settings = _admin("settings")


@admin_settings.get("/settings")
async def get_settings_view():
    return {"settings": []}


@admin_settings.put("/settings")
async def update_settings():
    return {"message": "Settings updated"}


admin_logs = _admin("logs")


@admin_logs.get("/logs")
async def list_logs():
    return {"logs": []}


admin_reports = _admin("reports")


@admin_reports.get("/reports")
async def list_reports():
    return {"reports": []}


@admin_reports.post("/reports")
async def create_report():
    return {"message": "Report queued"}


ROUTERS = [
    router,
    public_auth,
    public_general,
    public_search,
    auth_general,
    auth_search,
    auth_upload,
    auth_heavy,
    admin_general,
    admin_users,
    admin_settings,
    admin_logs,
    admin_reports,
]
