"""Loader for the TOML mail configuration (servers and accounts)."""

from __future__ import annotations

import tomllib
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator

from courrier.domain.entities import DEFAULT_IMAP_PORT, Account, Server
from courrier.domain.errors import ConfigError

EXAMPLE_CONFIG = """\
email_storage_path = "emails"
fetch_interval_seconds = 900
fetch_on_startup = true

[[servers]]
host = "imap.mail.me.com"
port = 993
accounts = [
  { email = "your-email@example.com", username = "your-username", password = "your-password" },
]

[[servers]]
host = "imap.gmail.com"
port = 993
accounts = [
  { email = "gmail-account@gmail.com", username = "gmail-username", password = "app-password" },
]
"""


class AccountConfig(BaseModel):
    email: str
    username: str
    password: SecretStr


class ServerConfig(BaseModel):
    host: str
    port: int = DEFAULT_IMAP_PORT
    max_connections: int | None = Field(default=None, ge=1)
    accounts: list[AccountConfig] = Field(default_factory=list)


class MailConfig(BaseModel):
    """Validated contents of config.toml."""

    email_storage_path: Path = Path("emails")
    fetch_interval_seconds: int | None = Field(default=None, gt=0)
    fetch_on_startup: bool = True
    servers: list[ServerConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_emails(self) -> "MailConfig":
        seen: set[str] = set()
        for server in self.servers:
            for account in server.accounts:
                key = account.email.lower()
                if key in seen:
                    raise ValueError(f"duplicate account email: {account.email}")
                seen.add(key)
        return self

    def accounts(self) -> list[Account]:
        """Flatten servers into Account entities, in file order."""
        out: list[Account] = []
        for srv in self.servers:
            server = Server(host=srv.host, port=srv.port, max_connections=srv.max_connections)
            for acc in srv.accounts:
                out.append(
                    Account(
                        email=acc.email,
                        username=acc.username,
                        password=acc.password.get_secret_value(),
                        server=server,
                    )
                )
        return out


def parse_mail_config(text: str) -> MailConfig:
    """Parse TOML text into a MailConfig."""
    try:
        data = tomllib.loads(text)
        return MailConfig.model_validate(data)
    except (tomllib.TOMLDecodeError, ValidationError, ValueError) as e:
        raise ConfigError(f"Invalid mail configuration: {e}") from e


def load_mail_config(path: str | Path) -> MailConfig:
    """Load and validate the mail configuration file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(
            f"Config file not found: {path}\n"
            f"Create it with the following format:\n\n{EXAMPLE_CONFIG}"
        )

    config = parse_mail_config(path.read_text(encoding="utf-8"))
    accounts = config.accounts()
    if not accounts:
        raise ConfigError(f"No accounts found in {path}")

    logger.info(f"Loaded {len(accounts)} account(s) from {path}")
    return config
