from app.authz.models import Profile, UserCredential, UserRole

__all__ = [
    "Profile",
    "UserCredential",
    "UserRole",
]
