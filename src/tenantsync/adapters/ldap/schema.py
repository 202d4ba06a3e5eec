"""Minimal Pydantic models for ldap3 search responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SEARCH_RESULT_ENTRY = "searchResEntry"
PAGED_RESULTS_CONTROL = "1.2.840.113556.1.4.319"


class LdapBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LdapSearchRow(LdapBaseModel):
    """One element of ``Connection.response``; referrals carry no attributes."""

    type: str
    dn: str = ""
    raw_attributes: dict[str, list[bytes]] = Field(default_factory=dict)

    @property
    def is_entry(self) -> bool:
        return self.type == SEARCH_RESULT_ENTRY


class LdapOperationResult(LdapBaseModel):
    """``Connection.result`` after an operation."""

    result: int = 0
    description: str = ""
    message: str = ""
    controls: dict[str, Any] = Field(default_factory=dict)

    @property
    def cookie(self) -> bytes | None:
        control = self.controls.get(PAGED_RESULTS_CONTROL)
        if not isinstance(control, dict):
            return None
        value = control.get("value")
        if not isinstance(value, dict):
            return None
        cookie = value.get("cookie")
        return cookie if isinstance(cookie, bytes) and cookie else None
