from fastapi import APIRouter

from workers_api.api.v1.endpoints import auth, causas, credentials, health, scraping

router = APIRouter(prefix='/api')
router.include_router(health.router, tags=['health'])
router.include_router(auth.router, prefix='/auth', tags=['auth'])
router.include_router(scraping.router, prefix='/configuracion-scraping', tags=['configuracion-scraping'])
router.include_router(scraping.history_router, prefix='/configuracion-scraping-history', tags=['configuracion-scraping'])
router.include_router(causas.router, prefix='/causas', tags=['causas'])
router.include_router(credentials.router, tags=['credentials'])
