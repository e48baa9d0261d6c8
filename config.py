from __future__ import annotations
import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    BASE_DIR = Path(__file__).resolve().parent
    # SQLite file in project directory
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'app.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False

    # транзакция записи расписания: таймаут и ожидание соединения из пула (сек)
    SCHEDULE_TX_ISOLATION = os.getenv("SCHEDULE_TX_ISOLATION", "SERIALIZABLE")
    SCHEDULE_TX_TIMEOUT_S = _env_int("SCHEDULE_TX_TIMEOUT_S", 10)
    SCHEDULE_TX_MAX_WAIT_S = _env_int("SCHEDULE_TX_MAX_WAIT_S", 5)

    REFERENCE_CACHE_TTL_S = _env_int("REFERENCE_CACHE_TTL_S", 300)

    NOTIFICATIONS_SYNC = False
    NOTIFICATION_WORKERS = _env_int("NOTIFICATION_WORKERS", 2)

    SEED_TEST_DATA = False


class DevConfig(BaseConfig):
    DEBUG = True
    SEED_TEST_DATA = True
    DEMO_DIRECTORY = {
        "groups": ["Йога для начинающих", "Стретчинг"],
        "teachers": [("Анна", "Петрова"), ("Игорь", "Смирнов")],
        "rooms": [("Зал 1", "101", 20), ("Зал 2", "102", 12)],
    }


class TestConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    # уведомления в тестах выполняются синхронно, без пула потоков
    NOTIFICATIONS_SYNC = True


class ProdConfig(BaseConfig):
    DEBUG = False
    SEED_TEST_DATA = False


config_map = {
    "dev": DevConfig,
    "test": TestConfig,
    "prod": ProdConfig,
    "default": DevConfig,
}
