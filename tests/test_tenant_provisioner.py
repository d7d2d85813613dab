"""End-to-end orchestration: provision, rollback, deprovision, status and log."""

import asyncio
import os

import pytest

from tenantkit.core.errors import (
    InvalidIdentifierError,
    ProvisioningError,
    TenantAlreadyProvisionedError,
    TenantValidationError,
)
from tenantkit.models.provisioning import DeprovisioningPhase, ProvisioningPhase
from tenantkit.models.tenant import TenantDescriptor
from tenantkit.provisioning import (
    ConfigProvisioner,
    DatabaseProvisioner,
    StorageProvisioner,
    TenantProvisioner,
)

ACME = {
    "id": "acme",
    "name": "Acme Corp",
    "database": {"strategy": "prefix"},
    "resources": {"quotas": {"storage": "5GB"}},
}


def _orchestrator(connections, store, tmp_path, *, storage_base=None, **kwargs) -> TenantProvisioner:
    return TenantProvisioner(
        DatabaseProvisioner(connections, store, backup_path=str(tmp_path / "db_backups")),
        StorageProvisioner(store, base_path=storage_base or str(tmp_path / "storage")),
        ConfigProvisioner(store, config_path=str(tmp_path / "config")),
        **kwargs,
    )


def _blocked_storage(tmp_path) -> str:
    """A base path that is a regular file, so storage provisioning fails."""
    blocker = tmp_path / "blocked"
    blocker.write_text("")
    return str(blocker)


async def _tenant_tables(connections, prefix: str) -> list[str]:
    return [t for t in await connections.get_connection().table_names() if t.startswith(prefix)]


# ── provision ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_acme_scenario(provisioner, settings, connections):
    tenant = await provisioner.provision(ACME)
    assert tenant.id == "acme"

    root = os.path.join(settings.storage_base_path, "tenants", "acme")
    for name in ("uploads", "cache", "temp", "logs", "backups", "exports", "imports"):
        assert os.path.isdir(os.path.join(root, name))
    assert os.path.isfile(os.path.join(settings.config_path, "acme", "tenant.json"))

    tables = await _tenant_tables(connections, "acme_")
    assert sorted(tables) == ["acme_settings", "acme_users"]

    status = await provisioner.get_provisioning_status("acme")
    assert status["overall"]["status"] == "ready"
    assert status["overall"]["components"] == {
        "database": "ready",
        "storage": "ready",
        "config": "ready",
    }
    assert status["storage"]["quota_bytes"] == 5 * 1024**3
    assert provisioner.get_phase("acme") == ProvisioningPhase.READY


@pytest.mark.asyncio
async def test_accepts_descriptor(provisioner):
    tenant = TenantDescriptor(id="globex", name="Globex")
    assert await provisioner.provision(tenant) is tenant


@pytest.mark.asyncio
async def test_invalid_id_touches_nothing(provisioner, settings, connections):
    with pytest.raises(TenantValidationError):
        await provisioner.provision({"id": "bad id!", "name": "Bad"})

    assert not os.path.exists(os.path.join(settings.storage_base_path, "tenants"))
    assert not os.path.exists(settings.config_path)
    assert await _tenant_tables(connections, "bad") == []
    assert provisioner.get_provisioning_log() == []


@pytest.mark.asyncio
async def test_missing_name_rejected(provisioner):
    with pytest.raises(TenantValidationError, match="name"):
        await provisioner.provision({"id": "acme"})


@pytest.mark.asyncio
async def test_validation_disabled_allows_missing_name(connections, store, tmp_path):
    orchestrator = _orchestrator(connections, store, tmp_path, validation_enabled=False)
    tenant = await orchestrator.provision({"id": "acme"})
    assert tenant.display_name == "acme"


@pytest.mark.asyncio
async def test_already_provisioned_rejected_without_rollback(provisioner, connections):
    await provisioner.provision(ACME)

    with pytest.raises(TenantAlreadyProvisionedError) as exc_info:
        await provisioner.provision(ACME)
    assert exc_info.value.components == ["database", "storage", "config"]

    # The first tenant is untouched
    status = await provisioner.get_provisioning_status("acme")
    assert status["overall"]["status"] == "ready"
    assert len(await _tenant_tables(connections, "acme_")) == 2


@pytest.mark.asyncio
async def test_concurrent_provision_of_same_tenant(provisioner):
    results = await asyncio.gather(
        provisioner.provision(ACME), provisioner.provision(ACME), return_exceptions=True
    )
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], TenantAlreadyProvisionedError)


@pytest.mark.asyncio
async def test_concurrent_overlapping_prefixes_provision_only_one(provisioner, connections):
    results = await asyncio.gather(
        provisioner.provision({"id": "acme", "name": "Acme"}),
        provisioner.provision({"id": "acme_eu", "name": "Acme EU"}),
        return_exceptions=True,
    )
    errors = [r for r in results if isinstance(r, Exception)]
    winners = [r for r in results if isinstance(r, TenantDescriptor)]
    assert len(errors) == 1
    assert len(winners) == 1
    assert isinstance(errors[0], ProvisioningError)
    assert "overlaps" in str(errors[0])

    winner = winners[0]
    status = await provisioner.get_provisioning_status(winner.id)
    assert status["overall"]["status"] == "ready"
    assert len(await _tenant_tables(connections, winner.table_prefix)) == 2


@pytest.mark.asyncio
async def test_invalid_prefix_rejected_before_any_step(provisioner, settings, connections):
    with pytest.raises(InvalidIdentifierError, match="acme"):
        await provisioner.provision(
            {"id": "acme", "name": "Acme", "database": {"strategy": "prefix", "prefix": "acme;drop"}}
        )

    messages = [e.message for e in provisioner.get_provisioning_log("acme")]
    assert "Rolling back tenant provisioning" not in messages
    assert not os.path.exists(os.path.join(settings.storage_base_path, "tenants", "acme"))
    assert await _tenant_tables(connections, "acme") == []


# ── rollback ──────────────────────────────────────────────────

@pytest.mark.parametrize("strategy", ["prefix", "separate"])
@pytest.mark.asyncio
async def test_storage_failure_rolls_back_database(connections, store, tmp_path, strategy):
    orchestrator = _orchestrator(connections, store, tmp_path, storage_base=_blocked_storage(tmp_path))

    with pytest.raises(ProvisioningError) as exc_info:
        await orchestrator.provision({"id": "acme", "name": "Acme", "database": {"strategy": strategy}})

    assert "acme" in str(exc_info.value)
    assert exc_info.value.tenant_id == "acme"
    assert await store.get("database", "acme") is None
    assert await _tenant_tables(connections, "acme_") == []
    assert not (tmp_path / "acme_db.db").exists()
    assert orchestrator.get_phase("acme") == ProvisioningPhase.PENDING


@pytest.mark.asyncio
async def test_storage_failure_rolls_back_schema(fake_connections, store, tmp_path):
    orchestrator = _orchestrator(fake_connections, store, tmp_path, storage_base=_blocked_storage(tmp_path))

    with pytest.raises(ProvisioningError, match="acme"):
        await orchestrator.provision({"id": "acme", "name": "Acme", "database": {"strategy": "schema"}})

    assert fake_connections.connection.schemas == set()
    assert ("drop_schema", "acme") in fake_connections.connection.calls
    assert await store.get("database", "acme") is None


@pytest.mark.asyncio
async def test_rollback_error_does_not_mask_original(fake_connections, store, tmp_path):
    fake_connections.connection.fail_on.add("drop_schema")
    orchestrator = _orchestrator(fake_connections, store, tmp_path, storage_base=_blocked_storage(tmp_path))

    with pytest.raises(ProvisioningError) as exc_info:
        await orchestrator.provision({"id": "acme", "name": "Acme", "database": {"strategy": "schema"}})

    assert exc_info.value.component == "storage"
    messages = [e.message for e in orchestrator.get_provisioning_log("acme")]
    assert "Rollback of database failed" in messages


@pytest.mark.asyncio
async def test_auto_rollback_disabled_keeps_resources(connections, store, tmp_path):
    orchestrator = _orchestrator(
        connections, store, tmp_path, storage_base=_blocked_storage(tmp_path), auto_rollback=False
    )
    with pytest.raises(ProvisioningError):
        await orchestrator.provision(ACME)

    assert await store.get("database", "acme") is not None
    assert orchestrator.get_phase("acme") == ProvisioningPhase.DATABASE_DONE


@pytest.mark.asyncio
async def test_post_validation_failure_rolls_back(connections, store, tmp_path):
    class StuckConfig(ConfigProvisioner):
        async def get_status(self, tenant_id):
            return {"status": "provisioning", "message": "still writing"}

    orchestrator = TenantProvisioner(
        DatabaseProvisioner(connections, store),
        StorageProvisioner(store, base_path=str(tmp_path / "storage")),
        StuckConfig(store, config_path=str(tmp_path / "config")),
    )

    with pytest.raises(ProvisioningError, match="Component 'config' is not ready"):
        await orchestrator.provision(ACME)

    assert await store.list("database") == {}
    assert await store.list("storage") == {}
    assert await store.list("config") == {}
    assert not (tmp_path / "storage" / "tenants" / "acme").exists()


# ── deprovision ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_deprovision_removes_everything(provisioner, settings, connections):
    await provisioner.provision(ACME)

    result = await provisioner.deprovision("acme")
    assert result
    assert result.components == {"database": True, "storage": True, "config": True}
    assert result.errors == {}

    assert not os.path.exists(os.path.join(settings.storage_base_path, "tenants", "acme"))
    assert not os.path.exists(os.path.join(settings.config_path, "acme"))
    assert await _tenant_tables(connections, "acme_") == []
    assert provisioner.get_provisioning_log("acme")[-1].phase == DeprovisioningPhase.GONE
    # Nothing is kept for a tenant that is gone
    assert provisioner.get_phase("acme") is None
    assert "acme" not in provisioner._locks

    status = await provisioner.get_provisioning_status("acme")
    assert status["overall"]["status"] == "provisioning"
    assert set(status["overall"]["components"].values()) == {"not_provisioned"}


@pytest.mark.asyncio
async def test_deprovision_with_backup_threads_flag(provisioner, settings):
    await provisioner.provision(ACME)

    result = await provisioner.deprovision("acme", backup=True)
    assert result.backup is True
    assert os.listdir(settings.database_backup_path)
    assert os.listdir(os.path.join(settings.storage_base_path, "backups"))
    assert os.listdir(os.path.join(settings.config_path, "backups"))


@pytest.mark.asyncio
async def test_deprovision_default_follows_component_settings(provisioner, settings):
    assert settings.storage_backup_on_deprovision is True
    assert settings.config_backup_on_deprovision is True
    await provisioner.provision(ACME)

    result = await provisioner.deprovision("acme")
    assert result.success is True
    assert result.backup is None
    assert os.listdir(os.path.join(settings.config_path, "backups"))
    assert os.listdir(os.path.join(settings.storage_base_path, "backups"))
    assert not os.path.exists(settings.database_backup_path)


@pytest.mark.asyncio
async def test_deprovision_without_backup_writes_none(provisioner, settings):
    await provisioner.provision(ACME)
    await provisioner.deprovision("acme", backup=False)

    assert not os.path.exists(settings.database_backup_path)
    assert not os.path.exists(os.path.join(settings.storage_base_path, "backups"))
    assert not os.path.exists(os.path.join(settings.config_path, "backups"))


@pytest.mark.asyncio
async def test_deprovision_unknown_tenant_succeeds(provisioner):
    result = await provisioner.deprovision("ghost")
    assert result.success is True
    assert result.errors == {}
    # Idempotent
    assert (await provisioner.deprovision("ghost")).success is True
    assert provisioner.get_phase("ghost") is None
    assert provisioner._locks == {}


@pytest.mark.asyncio
async def test_deprovision_reports_partial_failure(fake_connections, store, tmp_path):
    orchestrator = _orchestrator(fake_connections, store, tmp_path)
    await orchestrator.provision({"id": "acme", "name": "Acme", "database": {"strategy": "schema"}})
    fake_connections.connection.fail_on.add("drop_schema")

    result = await orchestrator.deprovision("acme")
    assert not result
    assert result.components == {"database": False, "storage": True, "config": True}
    assert "drop_schema failed" in result.errors["database"]
    assert not (tmp_path / "storage" / "tenants" / "acme").exists()
    assert await store.get("database", "acme") is not None


# ── log ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_log_filter_and_clear(provisioner):
    await provisioner.provision(ACME)
    await provisioner.provision({"id": "globex", "name": "Globex"})

    acme_log = provisioner.get_provisioning_log("acme")
    assert acme_log
    assert all(entry.tenant_id == "acme" for entry in acme_log)
    assert acme_log[0].message == "Starting tenant provisioning"
    assert acme_log[-1].message == "Tenant provisioning completed"
    assert acme_log[-1].phase == ProvisioningPhase.READY

    assert len(provisioner.get_provisioning_log()) > len(acme_log)
    assert provisioner.clear_log() is provisioner
    assert provisioner.get_provisioning_log() == []
