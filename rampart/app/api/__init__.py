from .plan import router as plan_router

__all__ = ["plan_router"]
