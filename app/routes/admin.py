from fastapi import APIRouter, HTTPException, Depends, status
from app.models.admin import AdminCreate, AdminResponse, AdminLogin, AdminLoginResponse
from app.utils.auth import hash_password, verify_password, create_access_token, get_current_user
from app.database.db_operations import db_ops
from app.config.database import Collections
from datetime import datetime

router = APIRouter(prefix="/admin", tags=["Admin"])


def _to_response(admin: dict) -> AdminResponse:
    return AdminResponse(
        _id=str(admin["_id"]),
        username=admin["username"],
        email=admin["email"],
        full_name=admin.get("full_name", ""),
        role=admin.get("role", "admin"),
        is_active=admin.get("is_active", True),
        created_at=admin.get("created_at", datetime.utcnow()),
        updated_at=admin.get("updated_at", datetime.utcnow())
    )


@router.post("/login", response_model=AdminLoginResponse)
async def admin_login(credentials: AdminLogin):
    """
    Authenticate admin user and return JWT token
    """
    admin = await db_ops.get_one(Collections.ADMINS, {"username": credentials.username})

    if not admin or not verify_password(credentials.password, admin.get("password", "")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password"
        )

    if not admin.get("is_active", True):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated"
        )

    token_data = {
        "sub": str(admin["_id"]),
        "username": admin["username"],
        "role": admin.get("role", "admin"),
    }
    access_token = create_access_token(data=token_data)

    return AdminLoginResponse(
        access_token=access_token,
        admin=_to_response(admin)
    )

@router.get("/me", response_model=AdminResponse)
async def get_current_admin(current_user: dict = Depends(get_current_user)):
    """
    Get current authenticated admin information
    """
    admin = await db_ops.get_by_id(Collections.ADMINS, current_user["sub"])

    if not admin:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Admin not found"
        )

    return _to_response(admin)

@router.post("/create", response_model=AdminResponse, status_code=status.HTTP_201_CREATED)
async def create_admin(admin_data: AdminCreate, current_user: dict = Depends(get_current_user)):
    """
    Create a new admin user (requires super_admin role)
    """
    if current_user.get("role") != "super_admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only super admins can create new admins"
        )

    existing_admin = await db_ops.get_one(Collections.ADMINS, {"username": admin_data.username})
    if existing_admin:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already exists"
        )

    existing_email = await db_ops.get_one(Collections.ADMINS, {"email": admin_data.email})
    if existing_email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already exists"
        )

    admin_doc = admin_data.model_dump(exclude={"password"})
    admin_doc["password"] = hash_password(admin_data.password)

    created_admin = await db_ops.create(Collections.ADMINS, admin_doc)
    return _to_response(created_admin)
