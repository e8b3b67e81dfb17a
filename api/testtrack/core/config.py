from urllib.parse import urlsplit, urlunsplit

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "TestTrack"

    # Private URL of the TestTrack API, may embed basic-auth credentials
    TEST_TRACK_API_URL: str | None = None
    HTTP_TIMEOUT_SECONDS: float = 5.0

    # Cookies
    VISITOR_COOKIE_NAME: str = "tt_visitor_id"
    MIXPANEL_TOKEN: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def public_api_url(self) -> str | None:
        """The API URL with any embedded credentials stripped, safe to hand to clients."""
        if not self.TEST_TRACK_API_URL:
            return None
        parts = urlsplit(self.TEST_TRACK_API_URL)
        return urlunsplit(parts._replace(netloc=parts.netloc.rpartition("@")[2]))

    @property
    def correlation_cookie_name(self) -> str:
        return f"mp_{self.MIXPANEL_TOKEN}_mixpanel"


settings = Settings()
