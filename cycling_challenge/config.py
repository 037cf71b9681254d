import os
from dotenv import load_dotenv

load_dotenv()

# Credenciales de consumidor de Garmin (OAuth 1.0a). Se validan al construir el firmador.
GARMIN_CONSUMER_KEY = os.getenv("GARMIN_CONSUMER_KEY", "")
GARMIN_CONSUMER_SECRET = os.getenv("GARMIN_CONSUMER_SECRET", "")

REQUEST_TOKEN_URL = os.getenv(
    "REQUEST_TOKEN_URL", "https://connectapi.garmin.com/oauth-service/oauth/request_token"
)
ACCESS_TOKEN_URL = os.getenv(
    "ACCESS_TOKEN_URL", "https://connectapi.garmin.com/oauth-service/oauth/access_token"
)
AUTHORIZE_URL = os.getenv("AUTHORIZE_URL", "https://connect.garmin.com/oauthConfirm")

# La URL pública del frontend, sin trailing slash
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
GARMIN_CALLBACK_URL = os.getenv("GARMIN_CALLBACK_URL", f"{FRONTEND_URL}/api/garmin-callback")

# Wellness API (detalles de actividad)
GARMIN_API_URL = os.getenv("GARMIN_API_URL", "https://apis.garmin.com/wellness-api/rest")

# Dónde guardamos la DB SQLite
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./challenges.db")

# Clave simple para proteger los endpoints admin
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "change-me")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Tokens pendientes del handshake: vida máxima y capacidad
PENDING_TOKEN_TTL_S = int(os.getenv("PENDING_TOKEN_TTL_S", "900"))
PENDING_TOKEN_MAX = int(os.getenv("PENDING_TOKEN_MAX", "100"))

HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "30"))
