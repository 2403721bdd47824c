"""
FastAPI Dependencies for the Funnel Recovery Engine.
"""

from fastapi import Request

from src.engine import RecoveryEngine


def get_engine(request: Request) -> RecoveryEngine:
    """
    Dependency returning the engine created in the application lifespan.
    """
    return request.app.state.engine
