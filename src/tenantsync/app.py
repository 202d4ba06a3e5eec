"""Application orchestration entry points."""

from __future__ import annotations

import importlib
from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from tenantsync.adapters.ldap import Ldap3SessionProvider
from tenantsync.adapters.sqlalchemy import SqlAlchemyCheckpointStore, SqlAlchemyLockService
from tenantsync.adapters.sqlalchemy.unit_of_work import is_started, startup
from tenantsync.config import (
    ConfigurationError,
    get_directory_config,
    get_sync_config,
    require_env_vars,
)
from tenantsync.domain.directory import (
    ActiveDirectoryAccountInterpreter,
    AttributeMapperRegistry,
    DirectoryClient,
    DirectoryLayout,
    EntitySchema,
    GroupSchema,
    LdapAccountInterpreter,
    QueryPolicy,
    ResumePolicy,
)
from tenantsync.domain.model import DEFAULT_TENANT
from tenantsync.domain.sync import (
    SourceCapabilities,
    SourceHandle,
    SourceRegistry,
    TenantPolicy,
    TenantSynchronizer,
)

if TYPE_CHECKING:
    from tenantsync.config import (
        AccountInterpreterSettings,
        DirectoryConfig,
        DirectorySourceSettings,
        SyncConfig,
    )
    from tenantsync.domain.directory import AccountInterpreter
    from tenantsync.domain.model import SyncCheckpoint, SyncDiagnostic, SyncRunResult
    from tenantsync.domain.ports import DirectorySessionProvider, IdentityUnitOfWorkFactory

ProviderFactory = Callable[["DirectorySourceSettings"], "DirectorySessionProvider"]

IDENTITY_STORE_ENV = "TENANTSYNC_IDENTITY_STORE"

log = getLogger(__name__)


def build_directory_layout(settings: DirectorySourceSettings) -> DirectoryLayout:
    groups = settings.groups
    persons = settings.persons
    return DirectoryLayout(
        groups=GroupSchema(
            search_base=groups.search_base,
            query=groups.query,
            differential_query=groups.differential_query,
            id_attribute=groups.id_attribute,
            object_class=groups.object_class,
            attribute_mapping=dict(groups.attribute_mapping),
            attribute_defaults=dict(groups.attribute_defaults),
            member_attribute=groups.member_attribute,
        ),
        persons=EntitySchema(
            search_base=persons.search_base,
            query=persons.query,
            differential_query=persons.differential_query,
            id_attribute=persons.id_attribute,
            object_class=persons.object_class,
            attribute_mapping=dict(persons.attribute_mapping),
            attribute_defaults=dict(persons.attribute_defaults),
        ),
        modify_timestamp_attribute=settings.modify_timestamp_attribute,
        timestamp_format=settings.timestamp_format,
        query_batch_size=settings.query_batch_size,
        attribute_batch_size=settings.attribute_batch_size,
        policy=QueryPolicy(
            error_on_missing_members=settings.error_on_missing_members,
            error_on_duplicate_gid=settings.error_on_duplicate_gid,
            error_on_missing_gid=settings.error_on_missing_gid,
            error_on_duplicate_uid=settings.error_on_duplicate_uid,
            error_on_missing_uid=settings.error_on_missing_uid,
        ),
        resume=ResumePolicy(
            max_attempts=settings.resume_attempts,
            backoff_factor=settings.resume_backoff,
        ),
    )


def build_account_interpreter(
    settings: AccountInterpreterSettings | None,
) -> AccountInterpreter | None:
    if settings is None:
        return None
    if settings.kind == "ad":
        return ActiveDirectoryAccountInterpreter()
    return LdapAccountInterpreter(
        disabled_value=settings.disabled_value or "",
        accept_null=settings.accept_null,
    )


def _ldap_provider(settings: DirectorySourceSettings) -> DirectorySessionProvider:
    return Ldap3SessionProvider(
        settings.connection, binary_attributes=settings.binary_attributes
    )


def build_directory_client(
    settings: DirectorySourceSettings,
    *,
    provider_factory: ProviderFactory | None = None,
) -> DirectoryClient:
    """Create the client for one configured source."""

    provider = (provider_factory or _ldap_provider)(settings)
    return DirectoryClient(
        provider,
        build_directory_layout(settings),
        mappers=AttributeMapperRegistry.from_names(settings.attribute_mappers),
    )


def build_source_registry(
    config: DirectoryConfig,
    *,
    provider_factory: ProviderFactory | None = None,
) -> SourceRegistry:
    registry = SourceRegistry()
    for tenant, tenant_settings in config.tenants.items():
        registry.set_policy(
            tenant,
            TenantPolicy(
                external_user_control=tenant_settings.external_user_control,
                external_user_control_source=tenant_settings.external_user_control_source,
            ),
        )
        for source in tenant_settings.sources:
            registry.register(
                tenant,
                SourceHandle(
                    source_id=source.id,
                    client=build_directory_client(source, provider_factory=provider_factory),
                    active=source.active,
                    capabilities=SourceCapabilities(
                        account_interpreter=build_account_interpreter(source.account_interpreter),
                        tenant_aware=source.tenant_aware,
                    ),
                ),
            )
    return registry


def load_identity_store_factory(reference: str | None = None) -> IdentityUnitOfWorkFactory:
    """Resolve ``module:attribute`` to the identity store's unit-of-work factory.

    The factory is called with a tenant id and must return a unit of work on
    that tenant's identity store.
    """

    if reference is None:
        reference = require_env_vars([IDENTITY_STORE_ENV])[IDENTITY_STORE_ENV]
    module_name, separator, attribute = reference.partition(":")
    if not separator or not module_name or not attribute:
        raise ConfigurationError(
            f"{IDENTITY_STORE_ENV} must look like 'package.module:factory', got {reference!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import identity store module {module_name!r}") from exc
    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ConfigurationError(f"{reference!r} is not a callable unit-of-work factory")
    return factory


def build_synchronizer(
    *,
    identity_unit_of_work_factory: IdentityUnitOfWorkFactory | None = None,
    directory_config: DirectoryConfig | None = None,
    sync_config: SyncConfig | None = None,
    provider_factory: ProviderFactory | None = None,
) -> TenantSynchronizer:
    """Wire a ``TenantSynchronizer`` from the environment and the given overrides."""

    if not is_started():
        startup()
    registry = build_source_registry(
        directory_config or get_directory_config(), provider_factory=provider_factory
    )
    return TenantSynchronizer(
        registry=registry,
        unit_of_work_factory=identity_unit_of_work_factory or load_identity_store_factory(),
        checkpoints=SqlAlchemyCheckpointStore(),
        locks=SqlAlchemyLockService(),
        config=sync_config or get_sync_config(),
    )


def synchronize_tenant(
    tenant: str = DEFAULT_TENANT,
    *,
    full: bool = False,
    force: bool = False,
    wait_for_lock: bool = False,
    synchronizer: TenantSynchronizer | None = None,
) -> SyncRunResult:
    """Synchronise one tenant using the configured adapters."""

    effective = synchronizer or build_synchronizer()
    log.info(
        "Starting directory sync: tenant=%s, full=%s, force=%s", tenant, full, force
    )
    result = effective.synchronize(
        tenant,
        force_full_sync=force,
        is_full_sync=full,
        wait_for_lock=wait_for_lock,
    )
    log.info(
        f"Finished directory sync: tenant={tenant}, lock_acquired={result.lock_acquired}, "
        f"sources={[summary.source_id for summary in result.sources]}"
    )
    return result


def probe_directory_source(
    tenant: str,
    source_id: str,
    *,
    synchronizer: TenantSynchronizer | None = None,
) -> SyncDiagnostic:
    effective = synchronizer or build_synchronizer()
    return effective.test_synchronize(tenant, source_id)


def sync_status(
    tenant: str = DEFAULT_TENANT,
    *,
    synchronizer: TenantSynchronizer | None = None,
) -> list[SyncCheckpoint]:
    """Tenant checkpoint followed by one checkpoint per configured source."""

    effective = synchronizer or build_synchronizer()
    checkpoints = [effective.checkpoint(tenant)]
    checkpoints.extend(
        effective.checkpoint(tenant, handle.source_id)
        for handle in effective.registry.chain(tenant)
    )
    return checkpoints


