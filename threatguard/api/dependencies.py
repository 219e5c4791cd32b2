"""Request dependencies"""

from fastapi import Request

from threatguard.core import SecurityCore


def get_core(request: Request) -> SecurityCore:
    """SecurityCore created by the application lifespan"""
    return request.app.state.core
