"""Login state for the social login flow."""

from vaultswap.auth.login_state import LoginAttempt, LoginStateStore, pkce_challenge

__all__ = ["LoginAttempt", "LoginStateStore", "pkce_challenge"]
