from .provider import AuthProvider, CurrentUser, SupabaseAuthProvider

__all__ = ["AuthProvider", "CurrentUser", "SupabaseAuthProvider"]
