from fastapi import Depends, FastAPI
import uvicorn
from api.routers.system import routes as SystemRoutes
from api.routers.affiliates import routes as AffiliateRoutes
from api.routers.admin import routes as AdminRoutes
from api.routers.coupons import routes as CouponRoutes
from api.routers.commissions import routes as CommissionRoutes
from api.routers.responses import install_error_handlers
from api.security import require_admin, require_service_key


class FastAPIManager:
    def __init__(self):
        # version format: version.subversion:month.year.day:stable (beta, stable)
        self.api = FastAPI(
            version="1.0:10.26.17:beta",
            title="Affiliate ledger API",
            description=(
                "Affiliate lifecycle and commission ledger of the shop. "
                "Affiliates register, publish coupons after admin review, earn commissions on referred orders "
                "and withdraw approved earnings. Every answer is an envelope: {ok: true, value} or "
                "{ok: false, error: {kind, reason}}. All routes except system ones require the X-Api-Key service key; "
                "user routes additionally read X-User-Id and X-User-Role set by the identity gateway."
            ),
        )
        install_error_handlers(self.api)
        self.add_routers()

    def add_routers(self):
        self.api.include_router(
            SystemRoutes.router
        )
        self.api.include_router(
            AffiliateRoutes.router,
            prefix="/affiliates",
            dependencies=[Depends(require_service_key)],
            tags=["Affiliate self-service"]
        )
        self.api.include_router(
            AdminRoutes.router,
            prefix="/admin",
            dependencies=[Depends(require_service_key), Depends(require_admin)],
            tags=["Admin review"]
        )
        self.api.include_router(
            CouponRoutes.router,
            prefix="/coupons",
            dependencies=[Depends(require_service_key)],
            tags=["Pricing service"]
        )
        self.api.include_router(
            CommissionRoutes.router,
            prefix="/commissions",
            dependencies=[Depends(require_service_key)],
            tags=["Order service"]
        )

    def start_server(self):
        uvicorn.run(self.api, host="0.0.0.0", port=8000)

    def get_app(self) -> FastAPI:
        return self.api
