import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Default LLM endpoint: OpenAI's public API
    DEFAULT_LLM_BASE_URL = "https://api.openai.com/v1"
    DEFAULT_MODEL = "gpt-3.5-turbo"

    def __init__(self):
        self._llm_base_url = os.environ.get("LLM_BASE_URL", self.DEFAULT_LLM_BASE_URL).rstrip("/")
        self._model = os.environ.get("OPENAI_MODEL", self.DEFAULT_MODEL)
        self._max_tokens = int(os.environ.get("OPENAI_MAX_TOKENS", "1000"))
        self._temperature = float(os.environ.get("OPENAI_TEMPERATURE", "0.7"))
        self._request_timeout = float(os.environ.get("LLM_REQUEST_TIMEOUT", "60"))
        self._system_prompt = os.environ.get("SYSTEM_PROMPT", "")
        self._stream_replies = _env_bool("STREAM_REPLIES", True)
        self._api_key_path = os.path.join(PROJECT_ROOT, "api_key.txt")
        self._locked_key_path = os.path.abspath(
            os.environ.get("LOCKED_KEY_PATH", os.path.join(PROJECT_ROOT, "locked_secrets", "api_key.zip"))
        )
        self._data_dir = os.path.abspath(os.environ.get("DATA_DIR", os.path.join(PROJECT_ROOT, "data")))
        self._log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    def get_llm_base_url(self) -> str:
        """Returns the base URL for the LLM API (e.g. 'https://api.openai.com/v1')."""
        return self._llm_base_url

    def set_llm_base_url(self, url: str):
        """Switch the active LLM endpoint at runtime."""
        self._llm_base_url = url.rstrip("/")

    def get_completions_url(self) -> str:
        return f"{self._llm_base_url}/chat/completions"

    def get_model(self) -> str:
        return self._model

    def get_max_tokens(self) -> int:
        return self._max_tokens

    def get_temperature(self) -> float:
        return self._temperature

    def get_request_timeout(self) -> float:
        return self._request_timeout

    def get_system_prompt(self) -> str:
        return self._system_prompt

    def get_stream_replies(self) -> bool:
        return self._stream_replies

    def get_api_key_path(self) -> str:
        return self._api_key_path

    def get_locked_key_path(self) -> str:
        return self._locked_key_path

    def get_data_dir(self) -> str:
        return self._data_dir

    def get_log_level(self) -> str:
        return self._log_level


settings = Settings()
