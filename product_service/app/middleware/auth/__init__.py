"""
Authentication for Product Service.
"""

from .auth_middleware import AuthenticatedUser, authenticated_user

__all__ = [
    "AuthenticatedUser",
    "authenticated_user",
]
