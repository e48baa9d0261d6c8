from __future__ import annotations
import os
from importlib import import_module
from flask import Flask
from config import config_map
from extensions import db, migrate
from sqlalchemy import inspect


def _seed_from_config(app):
    if not app.config.get("SEED_TEST_DATA"):
        return
    with app.app_context():
        # таблицы может ещё не быть (alembic upgrade и т.п.)
        if not inspect(db.engine).has_table("room"):
            return

        from models import Group, Teacher, Room  # локальный импорт, чтобы избежать циклов
        demo = app.config.get("DEMO_DIRECTORY", {})
        created = 0
        for name in demo.get("groups", []):
            if not Group.query.filter_by(name=name).first():
                db.session.add(Group(name=name))
                created += 1
        for first, last in demo.get("teachers", []):
            if not Teacher.query.filter_by(first_name=first, last_name=last).first():
                db.session.add(Teacher(first_name=first, last_name=last))
                created += 1
        for name, number, capacity in demo.get("rooms", []):
            if not Room.query.filter_by(name=name).first():
                db.session.add(Room(name=name, number=number, capacity=capacity))
                created += 1
        if created:
            db.session.commit()


def _init_engine_services(app: Flask) -> None:
    from blueprints.directory.cache import ReferenceDataCache
    from blueprints.schedule.notify import NotificationDispatcher

    app.extensions["reference_cache"] = ReferenceDataCache(
        ttl_seconds=app.config["REFERENCE_CACHE_TTL_S"])
    app.extensions["notifications"] = NotificationDispatcher(
        app,
        max_workers=app.config["NOTIFICATION_WORKERS"],
        sync=app.config["NOTIFICATIONS_SYNC"],
    )


def register_blueprints(app: Flask) -> None:
    # Жёстко импортируем модуль с маршрутами core перед взятием bp
    import_module("blueprints.core.routes")
    from blueprints.core import bp as core_bp
    from blueprints.directory import bp as directory_bp
    from blueprints.schedule.routes import api_bp as schedule_api_bp
    from blueprints.planning.routes import api_bp as planning_api_bp
    from blueprints.constraints.routes import api_bp as constraints_api_bp

    # core без префикса → '/health' в корне
    app.register_blueprint(core_bp)
    app.register_blueprint(directory_bp, url_prefix="/api/v1")
    app.register_blueprint(schedule_api_bp, url_prefix="/api/v1")
    app.register_blueprint(planning_api_bp, url_prefix="/api/v1")
    app.register_blueprint(constraints_api_bp, url_prefix="/api/v1")


def create_app(config_name: str | None = None, overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    cfg_name = config_name or os.getenv("FLASK_CONFIG", "default")
    app.config.from_object(config_map[cfg_name])
    # --- ВАЖНО: изоляция БД в тестах ---
    # pytest всегда выставляет переменную окружения PYTEST_CURRENT_TEST.
    # Делаем БД в памяти, чтобы никакие изменения из одного теста не протекали в другой.
    if os.environ.get("PYTEST_CURRENT_TEST"):
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        app.config["SEED_TEST_DATA"] = False
    # явные настройки вызывающего (например, файловая БД в тесте) важнее
    if overrides:
        app.config.update(overrides)
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite"):
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {"connect_args": {"check_same_thread": False}})
    else:
        # ожидание свободного соединения ограничено (SCHEDULE_TX_MAX_WAIT_S)
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {
            "pool_timeout": app.config["SCHEDULE_TX_MAX_WAIT_S"],
            "pool_pre_ping": True,
        })

    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass
    db.init_app(app)
    migrate.init_app(app, db)
    _init_engine_services(app)
    register_blueprints(app)
    _seed_from_config(app)
    return app
