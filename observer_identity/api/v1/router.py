from fastapi import APIRouter

from observer_identity.api.v1.endpoints import auth, credentials, kyc

router = APIRouter()

router.include_router(auth.router, prefix="/auth")
router.include_router(kyc.router, prefix="/kyc")
router.include_router(credentials.router, prefix="/credentials")
