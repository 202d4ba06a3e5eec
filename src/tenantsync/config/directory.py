"""Directory source settings loaded from a TOML document."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from .env import require_env_vars
from .errors import ConfigurationError

SOURCES_FILE_ENV = "TENANTSYNC_SOURCES_FILE"

type AttributeMapperName = Literal["avatar", "sid"]


class DirectoryBaseModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class ConnectionSettings(DirectoryBaseModel):
    urls: list[str] = Field(min_length=1)
    bind_dn: str | None = None
    password: SecretStr | None = None
    use_ssl: bool = False
    connect_timeout: float = Field(default=10.0, gt=0)
    receive_timeout: float = Field(default=30.0, gt=0)


class GroupSchemaSettings(DirectoryBaseModel):
    search_base: str = "ou=groups,dc=example,dc=com"
    query: str = "(objectclass=groupOfNames)"
    differential_query: str = "(&(objectclass=groupOfNames)(!(modifyTimestamp<={0})))"
    id_attribute: str = "cn"
    object_class: str = "groupOfNames"
    member_attribute: str = "member"
    attribute_mapping: dict[str, str] = Field(
        default_factory=lambda: {"authorityDisplayName": "description"}
    )
    attribute_defaults: dict[str, str] = Field(default_factory=dict)


class PersonSchemaSettings(DirectoryBaseModel):
    search_base: str = "ou=people,dc=example,dc=com"
    query: str = "(objectclass=inetOrgPerson)"
    differential_query: str = "(&(objectclass=inetOrgPerson)(!(modifyTimestamp<={0})))"
    id_attribute: str = "uid"
    object_class: str = "inetOrgPerson"
    attribute_mapping: dict[str, str] = Field(
        default_factory=lambda: {
            "firstName": "givenName",
            "lastName": "sn",
            "email": "mail",
            "organization": "o",
        }
    )
    attribute_defaults: dict[str, str] = Field(default_factory=dict)


class AccountInterpreterSettings(DirectoryBaseModel):
    kind: Literal["ad", "ldap"]
    disabled_value: str | None = None
    accept_null: bool = False

    @model_validator(mode="after")
    def _require_disabled_value(self) -> AccountInterpreterSettings:
        if self.kind == "ldap" and not self.disabled_value:
            raise ValueError("ldap account interpreter requires disabled_value")
        return self


class DirectorySourceSettings(DirectoryBaseModel):
    id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9_\-.]+$")
    active: bool = True
    tenant_aware: bool = False
    connection: ConnectionSettings
    groups: GroupSchemaSettings = Field(default_factory=GroupSchemaSettings)
    persons: PersonSchemaSettings = Field(default_factory=PersonSchemaSettings)
    modify_timestamp_attribute: str = "modifyTimestamp"
    timestamp_format: str = "%Y%m%d%H%M%SZ"
    query_batch_size: int = Field(default=1000, ge=0)
    attribute_batch_size: int = Field(default=0, ge=0)
    error_on_missing_members: bool = False
    error_on_duplicate_gid: bool = False
    error_on_missing_gid: bool = False
    error_on_duplicate_uid: bool = False
    error_on_missing_uid: bool = False
    attribute_mappers: dict[str, AttributeMapperName] = Field(default_factory=dict)
    binary_attributes: list[str] = Field(
        default_factory=lambda: ["jpegPhoto", "thumbnailPhoto", "objectSid"]
    )
    account_interpreter: AccountInterpreterSettings | None = None
    resume_attempts: int = Field(default=3, ge=1)
    resume_backoff: float = Field(default=0.5, ge=0)


class TenantSettings(DirectoryBaseModel):
    sources: list[DirectorySourceSettings] = Field(default_factory=list)
    external_user_control: bool = False
    external_user_control_source: str | None = None

    @model_validator(mode="after")
    def _check_sources(self) -> TenantSettings:
        ids = [source.id for source in self.sources]
        duplicates = sorted({source_id for source_id in ids if ids.count(source_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate source ids: {', '.join(duplicates)}")
        control = self.external_user_control_source
        if control is not None and control not in ids:
            raise ValueError(f"external_user_control_source {control!r} is not a configured source")
        return self


class DirectoryConfig(DirectoryBaseModel):
    """Precedence chains per tenant; list order is precedence order."""

    tenants: dict[str, TenantSettings] = Field(default_factory=dict)

    def tenant(self, tenant: str) -> TenantSettings:
        return self.tenants.get(tenant) or TenantSettings()


def load_directory_config(path: Path) -> DirectoryConfig:
    try:
        with path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Directory sources file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc

    try:
        return DirectoryConfig.model_validate(document)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid directory sources in {path}: {exc}") from exc


def get_directory_config() -> DirectoryConfig:
    values = require_env_vars([SOURCES_FILE_ENV])
    return load_directory_config(Path(values[SOURCES_FILE_ENV]).expanduser())
