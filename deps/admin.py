# deps/admin.py
from fastapi import Depends, HTTPException, status
from deps.auth import get_current_user, CurrentUser

def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    # role comes from the verified token; user management lives elsewhere
    if user.role != "ADMIN":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_REQUIRED",
        )
    return user
