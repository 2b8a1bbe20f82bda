import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from storefront.core import config
from storefront.core.errors import register_error_handlers
from storefront.core.tracing import RequestLoggingMiddleware, configure_logging
from storefront.database import Base, engine
from storefront.models import user
from storefront.routes import user_routes

configure_logging()

app = FastAPI(title='Storefront API')

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

register_error_handlers(app)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine, tables=[user.User.__table__])
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Storefront API Running'}


app.include_router(user_routes.router, prefix='/api/v1/users')
