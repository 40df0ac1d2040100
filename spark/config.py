from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger()


class StartupError(RuntimeError):
    """Raised when the configuration leaves the server without a usable content source."""


class ProxyRule(BaseModel):
    prefix: str
    upstream: str


class Settings(BaseSettings):
    """Process configuration, loaded once from env vars (``SPARK_*``) and CLI flags."""

    model_config = SettingsConfigDict(
        env_prefix="SPARK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    address: str = "0.0.0.0"
    port: int = 8080
    ssl_port: int = 10433
    path: str = "/"
    deny: str = ""
    status: int = 200
    cert: str = "cert.pem"
    key: str = "key.pem"
    proxy: str = ""
    cors_origin: str = ""
    cors_methods: str = "POST, GET, OPTIONS, PUT, DELETE"
    cors_headers: str = "Content-Type, Authorization, X-Requested-With"
    content_type: str = ""
    mock: str = ""
    body: str = "."

    proxy_timeout: float = 5.0
    log_level: str = "info"
    log_json: bool = False

    @field_validator("path")
    @classmethod
    def _path_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @property
    def deny_patterns(self) -> tuple[str, ...]:
        return parse_deny_list(self.deny)

    @property
    def cors_enabled(self) -> bool:
        return bool(self.cors_origin)


def parse_deny_list(value: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in value.split(",") if p.strip())


def parse_proxy_rules(value: str) -> list[ProxyRule]:
    """
    Parse ``/prefix=>http://host`` pairs separated by commas.

    Pairs without ``=>`` are ignored, pairs with a bad prefix or URL are
    dropped with a warning. Parsing never fails.
    """
    rules: list[ProxyRule] = []
    for pair in value.split(","):
        elements = pair.split("=>")
        if len(elements) != 2:
            continue
        prefix = elements[0].strip()
        upstream = elements[1].strip()
        if prefix.startswith("/") and upstream.startswith("http"):
            rules.append(ProxyRule(prefix=prefix, upstream=upstream))
        else:
            logger.warning("bad_proxy_pair", prefix=prefix, upstream=upstream)
    return rules
