from humanizer.api.routes.admin import router as admin_router
from humanizer.api.routes.homework import router as homework_router
from humanizer.api.routes.humanize import router as humanize_router
from humanizer.api.routes.payments import router as payments_router
from humanizer.api.routes.user import router as user_router

# 对外导出路由
__all__ = ["admin_router", "homework_router", "humanize_router", "payments_router", "user_router"]
