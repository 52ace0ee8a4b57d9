import logging

from flask import Flask
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError

from .config import Config
from .errors import (
    InvalidStatusTransitionError,
    PurchaseOrderNotFoundError,
    StatisticsCalculationError,
    StatisticsErrorCode,
    SupplyRecordNotFoundError,
)
from .extensions import db, jwt, migrate
from .services.statistics_calculator import create_statistics_calculator
from .services.supply_share import SupplyShareManager

logger = logging.getLogger(__name__)


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)
    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    CORS(app)

    db.init_app(app)
    jwt.init_app(app)
    migrate.init_app(app, db)

    app.extensions["statistics_calculator"] = create_statistics_calculator(app.config)
    app.extensions["supply_share_manager"] = SupplyShareManager(app.config["SHARE_BASE_URL"])

    register_error_handlers(app)
    register_blueprints(app)

    @app.get("/health")
    def health_check() -> tuple[dict[str, str], int]:
        return {"status": "ok"}, 200

    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(PurchaseOrderNotFoundError)
    def purchase_order_not_found(exc: PurchaseOrderNotFoundError) -> tuple[dict[str, object], int]:
        return {"message": "purchase order not found"}, 404

    @app.errorhandler(SupplyRecordNotFoundError)
    def supply_record_not_found(exc: SupplyRecordNotFoundError) -> tuple[dict[str, object], int]:
        return {"message": "supply record not found"}, 404

    @app.errorhandler(InvalidStatusTransitionError)
    def invalid_transition(exc: InvalidStatusTransitionError) -> tuple[dict[str, object], int]:
        return {"message": str(exc)}, 409

    @app.errorhandler(StatisticsCalculationError)
    def statistics_failed(exc: StatisticsCalculationError) -> tuple[dict[str, object], int]:
        if exc.code == StatisticsErrorCode.INVALID_FILTERS:
            return {"message": exc.message, "code": exc.code.value}, 400
        logger.error("statistics calculation failed (%s): %s", exc.code.value, exc.details.get("filters"))
        return {"message": "statistics are temporarily unavailable", "code": exc.code.value}, 500

    @app.errorhandler(SQLAlchemyError)
    def database_failed(exc: SQLAlchemyError) -> tuple[dict[str, object], int]:
        db.session.rollback()
        logger.exception("unhandled database error")
        return {"message": "internal server error"}, 500


def register_blueprints(app: Flask) -> None:
    from .api.v1.purchase_order_routes import purchase_order_bp
    from .api.v1.share_routes import share_bp
    from .api.v1.supply_record_routes import supply_record_bp
    from .api.v1.supply_routes import supply_bp

    app.register_blueprint(purchase_order_bp, url_prefix="/api/v1/purchase-orders")
    app.register_blueprint(supply_record_bp, url_prefix="/api/v1/supply-records")
    app.register_blueprint(share_bp, url_prefix="/api/v1/share")
    app.register_blueprint(supply_bp, url_prefix="/api/v1/supply")
