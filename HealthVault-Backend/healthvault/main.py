from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from sqlalchemy.exc import SQLAlchemyError

from healthvault.config import CORS_ORIGINS, HOST, PORT
from healthvault.database.connection import Base, engine, init_db
from healthvault.errors import HealthVaultError
from healthvault.routes import access_control, patient, record
from healthvault.utils.logger import logger

app = FastAPI(title="HealthVault Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(record.router)
app.include_router(access_control.router)
app.include_router(patient.router)

# Creates the MySQL database if needed, before the tables
init_db()


def initialize_tables():
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("All SQLAlchemy tables created successfully.")
    except SQLAlchemyError as e:
        logger.error("Error while creating tables: %s", e)


initialize_tables()


@app.get("/")
def root():
    return {"message": "HealthVault Backend is Running!"}


@app.exception_handler(HealthVaultError)
async def healthvault_error_handler(request: Request, exc: HealthVaultError):
    # messages are generic by construction; never echo request payloads
    logger.info("%s on %s %s", type(exc).__name__, request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.middleware("http")
async def catch_exceptions_middleware(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description="HealthVault API Documentation",
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    for path in openapi_schema["paths"].values():
        for method in path.values():
            method.setdefault("security", [{"BearerAuth": []}])
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


def run():
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
