from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tuition_billing.api.v1.classes.router import router as classes_router
from tuition_billing.api.v1.enrollments.router import router as enrollments_router
from tuition_billing.api.v1.payments.router import router as payments_router
from tuition_billing.api.v1.students.router import router as students_router
from tuition_billing.core.config import settings
from tuition_billing.core.logging import configure_logging


def create_app() -> FastAPI:
    configure_logging(settings.log_level, settings.log_json)
    app = FastAPI(title="Tuition Billing")

    # CORS: the administrative UI is served from a separate origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(students_router)
    app.include_router(classes_router)
    app.include_router(enrollments_router)
    app.include_router(payments_router)

    return app


app = create_app()
