# vmcandles/config.py
import os
from datetime import timedelta
from dotenv import load_dotenv

# Directory of this config file (vmcandles/) and the project root one level up
CONFIG_FILE_DIR = os.path.abspath(os.path.dirname(__file__))
PROJECT_ROOT = os.path.dirname(CONFIG_FILE_DIR)

dotenv_path = os.path.join(PROJECT_ROOT, '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)

DEFAULT_SECRET_KEY = 'change_this_default_secret_key_vmcandles'
DEFAULT_JWT_SECRET_KEY = 'change_this_default_jwt_secret_key_vmcandles'

# Public Transbank integration credentials (Webpay Plus test commerce)
WEBPAY_INTEGRATION_COMMERCE_CODE = '597055555532'
WEBPAY_INTEGRATION_API_KEY = '579B532A7440BB0C9079DED94D31EA1615BACEB56610332264630D42D0A36B1C'


class Config:
    """Base configuration."""
    ENV_NAME = 'default'
    SECRET_KEY = os.environ.get('SECRET_KEY', DEFAULT_SECRET_KEY)
    DEBUG = False
    TESTING = False
    API_NAME = "V&M Candle Experience API"
    API_VERSION = "1.0.0"

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(PROJECT_ROOT, 'instance', 'vmcandles.sqlite3')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', DEFAULT_JWT_SECRET_KEY)
    JWT_TOKEN_LOCATION = ['headers']
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=int(os.environ.get('JWT_ACCESS_TOKEN_HOURS', 24)))
    JWT_ENCODE_ISSUER = 'vmcandles-api'
    JWT_DECODE_ISSUER = 'vmcandles-api'
    JWT_ENCODE_AUDIENCE = 'vmcandles-client'
    JWT_DECODE_AUDIENCE = 'vmcandles-client'

    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(PROJECT_ROOT, 'instance', 'uploads'))
    ALLOWED_IMAGE_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'webp'}
    ALLOWED_AUDIO_EXTENSIONS = {'mp3', 'wav', 'ogg', 'm4a'}
    MAX_CONTENT_LENGTH = 50 * 1024 * 1024  # audio uploads
    INVOICE_PDF_PATH = os.environ.get('INVOICE_PDF_PATH', os.path.join(PROJECT_ROOT, 'instance', 'invoices'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_FILE = os.environ.get('LOG_FILE', None)

    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', "http://localhost:8080,http://127.0.0.1:8080")

    # --- Webpay Plus (Transbank) ---
    WEBPAY_ENVIRONMENT = os.environ.get('WEBPAY_ENVIRONMENT', 'integration')
    WEBPAY_COMMERCE_CODE = os.environ.get('WEBPAY_COMMERCE_CODE', WEBPAY_INTEGRATION_COMMERCE_CODE)
    WEBPAY_API_KEY = os.environ.get('WEBPAY_API_KEY', WEBPAY_INTEGRATION_API_KEY)
    FRONTEND_URL = os.environ.get('FRONTEND_URL', 'http://localhost:8080')
    BACKEND_URL = os.environ.get('BACKEND_URL', 'http://localhost:3000')
    WEBPAY_RETURN_URL = os.environ.get('WEBPAY_RETURN_URL', f"{BACKEND_URL}/api/payments/webpay/return")

    # --- Shop rules ---
    FREE_SHIPPING_THRESHOLD = 50
    FLAT_SHIPPING_COST = 5
    SUBSCRIPTION_CURRENCY = 'CLP'

    DEFAULT_COMPANY_INFO = {
        "name": "V&M CANDLE EXPERIENCE",
        "tagline": "Velas Artesanales Premium",
        "city_country": "Santiago, Chile",
        "email": os.environ.get('COMPANY_CONTACT_EMAIL', "contacto@vmcandles.com"),
    }

    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', "memory://")
    RATELIMIT_STRATEGY = "fixed-window"
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = "1000 per 15 minutes"
    AUTH_RATELIMITS = ["20 per minute", "200 per hour"]
    ADMIN_API_RATELIMITS = ["200 per hour"]

    CONTENT_SECURITY_POLICY = {
        'default-src': ['\'self\''],
        'img-src': ['\'self\'', 'data:'],
        'media-src': ['\'self\''],
        'frame-ancestors': ['\'none\''],
    }
    TALISMAN_FORCE_HTTPS = False

    INITIAL_ADMIN_EMAIL = os.environ.get('INITIAL_ADMIN_EMAIL', 'admin@vmcandles.com')
    INITIAL_ADMIN_PASSWORD = os.environ.get('INITIAL_ADMIN_PASSWORD', 'Admin123!')

    def validate(self):
        pass


class DevelopmentConfig(Config):
    ENV_NAME = 'development'
    DEBUG = True
    LOG_LEVEL = 'DEBUG'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        'sqlite:///' + os.path.join(PROJECT_ROOT, 'instance', 'dev_vmcandles.sqlite3')


class TestingConfig(Config):
    ENV_NAME = 'testing'
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('TEST_DATABASE_URL', 'sqlite:///:memory:')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)
    TALISMAN_FORCE_HTTPS = False
    RATELIMIT_ENABLED = False
    WEBPAY_ENVIRONMENT = 'integration'
    FRONTEND_URL = 'http://frontend.test'
    BACKEND_URL = 'http://backend.test'
    WEBPAY_RETURN_URL = 'http://backend.test/api/payments/webpay/return'


class ProductionConfig(Config):
    ENV_NAME = 'production'
    DEBUG = False
    TESTING = False
    TALISMAN_FORCE_HTTPS = True
    RATELIMIT_DEFAULT = "100 per 15 minutes"
    CORS_ORIGINS = os.environ.get('PROD_CORS_ORIGINS', Config.CORS_ORIGINS)

    def validate(self):
        if self.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise ValueError("Production SECRET_KEY is not set or is using the default value.")
        if self.JWT_SECRET_KEY == DEFAULT_JWT_SECRET_KEY:
            raise ValueError("Production JWT_SECRET_KEY is not set or is using the default value.")
        if self.WEBPAY_ENVIRONMENT == 'production' and self.WEBPAY_API_KEY == WEBPAY_INTEGRATION_API_KEY:
            raise ValueError("WEBPAY_API_KEY must be set when WEBPAY_ENVIRONMENT is production.")


config_by_name = dict(
    development=DevelopmentConfig,
    testing=TestingConfig,
    production=ProductionConfig,
    default=DevelopmentConfig
)

def get_config_by_name(config_name):
    config_class = config_by_name.get(config_name, DevelopmentConfig)
    config_instance = config_class()
    config_instance.validate()

    if config_name != 'testing':
        os.makedirs(os.path.join(PROJECT_ROOT, 'instance'), exist_ok=True)
        os.makedirs(config_instance.UPLOAD_FOLDER, exist_ok=True)
        os.makedirs(config_instance.INVOICE_PDF_PATH, exist_ok=True)
    return config_instance
