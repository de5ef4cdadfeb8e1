# config.py
import os


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///salao.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False
    JSON_SORT_KEYS = False

    # Flask-Mail (envio de orçamentos)
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "25"))
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "0") == "1"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "orcamentos@salao.local")

    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    ICS_UID_NAMESPACE = os.getenv("ICS_UID_NAMESPACE", "imperalina")
    ICS_PRODID = os.getenv("ICS_PRODID", "-//Imperalina//Appointments//PT-BR")

    PAYABLE_DEFAULT_DAYS = int(os.getenv("PAYABLE_DEFAULT_DAYS", "30"))
    STOCK_UPDATE_RETRIES = int(os.getenv("STOCK_UPDATE_RETRIES", "3"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    LOG_DIR = ""
