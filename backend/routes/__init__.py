from .chat import router as chat_router
from .social import router as social_router

__all__ = ["chat_router", "social_router"]
