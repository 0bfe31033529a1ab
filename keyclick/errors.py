"""
Exception hierarchy.

Every user-facing failure derives from KeyClickError so the process shell
can report it without crashing. Internal invariant violations are plain
AssertionErrors and are never wrapped here.
"""

from typing import Optional


class KeyClickError(Exception):
    """Base class for domain-specific errors"""
    def __init__(self, code: str, message: str, details: Optional[dict] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ListenerInstallError(KeyClickError):
    """The OS refused the global keyboard hook"""
    def __init__(self, message: str):
        super().__init__(code="LISTENER_INSTALL_FAILED", message=message)


class ClickInjectionError(KeyClickError):
    """Synthetic pointer input could not be injected"""
    def __init__(self, message: str, x: Optional[int] = None, y: Optional[int] = None):
        super().__init__(
            code="CLICK_INJECTION_FAILED",
            message=message,
            details={"x": x, "y": y}
        )


class UnknownTargetError(KeyClickError):
    """Target ID doesn't exist"""
    def __init__(self, target_id: int):
        super().__init__(
            code="TARGET_NOT_FOUND",
            message=f"Target {target_id} not found",
            details={"target_id": target_id}
        )


class InvalidModeError(KeyClickError):
    """Operation is not allowed in the current mode"""
    def __init__(self, operation: str, mode: str):
        super().__init__(
            code="INVALID_MODE",
            message=f"'{operation}' is not allowed in {mode} mode",
            details={"operation": operation, "mode": mode}
        )


class ProfileError(KeyClickError):
    """Base class for profile persistence failures"""


class ProfileNotFoundError(ProfileError):
    """No profile file exists for the given name"""
    def __init__(self, name: str, path=None):
        super().__init__(
            code="PROFILE_NOT_FOUND",
            message=f"Profile '{name}' not found",
            details={"name": name, "path": str(path) if path else None}
        )


class ProfileParseError(ProfileError):
    """Profile file exists but its content has the wrong shape"""
    def __init__(self, name: str, reason: str):
        super().__init__(
            code="PROFILE_PARSE_ERROR",
            message=f"Profile '{name}' is malformed: {reason}",
            details={"name": name, "reason": reason}
        )
