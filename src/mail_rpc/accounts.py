# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Account directory consumed by the email controller.

The controller only needs to look accounts up by id and to enumerate them;
each account exposes at least one identity (address + display name). SMTP and
IMAP settings are optional and only used by the background send strategy and
the inbox poller.

Accounts are declared in the INI configuration file, one section per
account::

    [account.work]
    name = Work
    email = alice@example.com
    smtp_host = smtp.example.com
    smtp_port = 587
    smtp_user = alice@example.com
    smtp_password = secret
    imap_host = imap.example.com
    imap_user = alice@example.com
    imap_password = secret
"""

from __future__ import annotations

import configparser
from pathlib import Path
from typing import Annotated, Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .codec import CONTROL_LOCAL_PART, control_address, domain_part
from .logger import get_logger

ACCOUNT_SECTION_PREFIX = "account."


class Identity(BaseModel):
    """A sending identity of an account."""

    model_config = ConfigDict(extra="forbid")

    id: Annotated[str, Field(min_length=1, description="Identity identifier")]
    email: Annotated[str, Field(min_length=3, description="Sender email address")]
    name: Annotated[str, Field(default="", description="Display name")]

    @field_validator("email")
    @classmethod
    def email_has_domain(cls, v: str) -> str:
        if "@" not in v or not domain_part(v):
            raise ValueError(f"invalid email address: {v!r}")
        return v


class SMTPSettings(BaseModel):
    """SMTP server used by the background send strategy."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: Annotated[int, Field(default=587, ge=1, le=65535)]
    user: str | None = None
    password: str | None = None
    use_tls: bool | None = None


class IMAPSettings(BaseModel):
    """IMAP server polled for replies and swept by auto-delete."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: Annotated[int, Field(default=993, ge=1, le=65535)]
    user: str
    password: str
    use_ssl: bool = True
    inbox_folder: str = "INBOX"
    sent_folder: str = "Sent"


class Account(BaseModel):
    """A mail account able to talk to its domain's filter-control service."""

    model_config = ConfigDict(extra="forbid")

    id: Annotated[str, Field(min_length=1, description="Account identifier")]
    name: str = ""
    identities: Annotated[List[Identity], Field(min_length=1)]
    smtp: SMTPSettings | None = None
    imap: IMAPSettings | None = None

    @property
    def identity(self) -> Identity:
        """The identity requests are sent from."""
        return self.identities[0]

    @property
    def email(self) -> str:
        return self.identity.email

    @property
    def domain(self) -> str:
        return domain_part(self.identity.email)

    def control_address(self, local_part: str = CONTROL_LOCAL_PART) -> str:
        return control_address(self.identity.email, local_part)

    def __repr__(self) -> str:
        return f"Account(id='{self.id}', email='{self.email}')"


class AccountDirectory:
    """In-memory account registry with lookup by id."""

    def __init__(self, accounts: Iterable[Account] = ()):
        self._accounts: Dict[str, Account] = {}
        for account in accounts:
            self.add(account)

    def add(self, account: Account) -> None:
        self._accounts[account.id] = account

    async def get_account(self, account_id: str) -> Account | None:
        """Return the account with ``account_id``, or None when unknown."""
        return self._accounts.get(account_id)

    async def get_accounts(self) -> Dict[str, Account]:
        return dict(self._accounts)

    def __len__(self) -> int:
        return len(self._accounts)

    @classmethod
    def from_config(cls, path: str | Path) -> "AccountDirectory":
        """Load every ``[account.<id>]`` section of an INI file."""
        parser = configparser.ConfigParser()
        parser.read(path)
        return cls(_parse_accounts(parser))


def _parse_accounts(parser: configparser.ConfigParser) -> List[Account]:
    logger = get_logger("AccountDirectory")
    accounts: List[Account] = []
    for section in parser.sections():
        if not section.startswith(ACCOUNT_SECTION_PREFIX):
            continue
        account_id = section[len(ACCOUNT_SECTION_PREFIX):]
        values = parser[section]
        data: Dict[str, object] = {
            "id": account_id,
            "name": values.get("name", account_id),
            "identities": [
                {
                    "id": values.get("identity_id", f"{account_id}-id1"),
                    "email": values.get("email", ""),
                    "name": values.get("name", ""),
                }
            ],
        }
        if values.get("smtp_host"):
            smtp: Dict[str, object] = {"host": values["smtp_host"], "port": values.getint("smtp_port", 587)}
            if values.get("smtp_user"):
                smtp["user"] = values["smtp_user"]
            if values.get("smtp_password"):
                smtp["password"] = values["smtp_password"]
            if values.get("smtp_use_tls"):
                smtp["use_tls"] = values.getboolean("smtp_use_tls")
            data["smtp"] = smtp
        if values.get("imap_host"):
            data["imap"] = {
                "host": values["imap_host"],
                "port": values.getint("imap_port", 993),
                "user": values.get("imap_user", values.get("email", "")),
                "password": values.get("imap_password", ""),
                "use_ssl": values.getboolean("imap_use_ssl", True),
                "inbox_folder": values.get("imap_inbox_folder", "INBOX"),
                "sent_folder": values.get("imap_sent_folder", "Sent"),
            }
        accounts.append(Account.model_validate(data))
        logger.debug("Loaded account %s", account_id)
    return accounts


__all__ = ["Account", "AccountDirectory", "IMAPSettings", "Identity", "SMTPSettings"]
