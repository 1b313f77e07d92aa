"""
Utility functions for microshop
Shared helpers for the response envelope and document formatting
"""
from datetime import datetime
from typing import Any, Optional


def error_payload(code: str, message: str, details: Optional[Any] = None) -> dict:
    """Create a standardized error response payload"""
    return {
        "success": False,
        "message": message,
        "code": code,
        "errors": details
    }


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def client_ip(request) -> Optional[str]:
    """Best-effort caller address, honouring a proxy's X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:50]
    if request.client:
        return request.client.host[:50]
    return None
