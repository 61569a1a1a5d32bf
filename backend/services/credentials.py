import os
import logging
import pyzipper

from models.errors import ConfigError
from settings import settings

logger = logging.getLogger(__name__)

KEY_FILENAME = "api_key.txt"


def get_api_key() -> str:
    """Returns the API key from OPENAI_API_KEY, else from api_key.txt, else ''."""
    key = os.environ.get("OPENAI_API_KEY", "").strip()
    if key:
        return key
    key_path = settings.get_api_key_path()
    if os.path.exists(key_path):
        with open(key_path, "r") as f:
            return f.read().strip()
    return ""


def auth_header(api_key: str) -> str:
    clean_key = api_key.strip()
    return clean_key if clean_key.lower().startswith("bearer ") else f"Bearer {clean_key}"


def unlock_api_key(password: str) -> str:
    """
    Extract api_key.txt from the AES-encrypted archive next to the key-file path.
    Returns the path written. A wrong password raises whatever pyzipper raises.
    """
    zip_path = settings.get_locked_key_path()
    if not os.path.exists(zip_path):
        raise ConfigError("API Key zip file not found in locked_secrets.")

    out_dir = os.path.dirname(settings.get_api_key_path())
    with pyzipper.AESZipFile(zip_path) as z:
        z.pwd = password.encode("utf-8")
        z.extract(KEY_FILENAME, out_dir)

    logger.info("Unlocked API key into %s", out_dir)
    return os.path.join(out_dir, KEY_FILENAME)
