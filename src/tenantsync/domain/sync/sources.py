"""Registry of configured directory sources per tenant."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tenantsync.domain.model import DEFAULT_TENANT, UnknownSourceError

if TYPE_CHECKING:
    from tenantsync.domain.directory import AccountInterpreter, DirectoryClient


@dataclass(frozen=True, slots=True, kw_only=True)
class SourceCapabilities:
    """Optional features of a source; absent means unsupported."""

    account_interpreter: AccountInterpreter | None = None
    tenant_aware: bool = False


@dataclass(frozen=True, slots=True, kw_only=True)
class SourceHandle:
    source_id: str
    client: DirectoryClient
    active: bool = True
    capabilities: SourceCapabilities = field(default_factory=SourceCapabilities)

    def is_active_for(self, tenant: str) -> bool:
        """Sources that are not tenant-aware only serve the default tenant."""

        if not self.active:
            return False
        return self.capabilities.tenant_aware or tenant == DEFAULT_TENANT


@dataclass(frozen=True, slots=True, kw_only=True)
class TenantPolicy:
    external_user_control: bool = False
    external_user_control_source: str | None = None


class SourceRegistry:
    """Ordered ``(tenant, source id) -> SourceHandle`` map.

    Registration order is precedence order: earlier sources win.
    """

    def __init__(self) -> None:
        self._handles: dict[tuple[str, str], SourceHandle] = {}
        self._chains: dict[str, list[str]] = {}
        self._policies: dict[str, TenantPolicy] = {}

    def register(self, tenant: str, handle: SourceHandle) -> None:
        key = (tenant, handle.source_id)
        if key in self._handles:
            raise ValueError(f"Source {handle.source_id!r} is already registered for {tenant!r}")
        self._handles[key] = handle
        self._chains.setdefault(tenant, []).append(handle.source_id)

    def set_policy(self, tenant: str, policy: TenantPolicy) -> None:
        self._policies[tenant] = policy

    def policy(self, tenant: str) -> TenantPolicy:
        return self._policies.get(tenant, TenantPolicy())

    def tenants(self) -> list[str]:
        return list(self._chains)

    def chain(self, tenant: str) -> list[SourceHandle]:
        return [self._handles[(tenant, source_id)] for source_id in self._chains.get(tenant, [])]

    def get(self, tenant: str, source_id: str) -> SourceHandle:
        try:
            return self._handles[(tenant, source_id)]
        except KeyError:
            raise UnknownSourceError(
                f"No directory source {source_id!r} is configured for tenant {tenant!r}"
            ) from None

    def account_interpreter_for(
        self, tenant: str, handle: SourceHandle
    ) -> AccountInterpreter | None:
        """Interpreter of ``handle`` when it controls account status for ``tenant``."""

        policy = self.policy(tenant)
        if not policy.external_user_control:
            return None
        if policy.external_user_control_source != handle.source_id:
            return None
        return handle.capabilities.account_interpreter
