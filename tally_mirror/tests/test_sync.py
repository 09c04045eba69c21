"""
Tests for the MasterSync facade, configuration, schema rendering and CLI.
"""
import json
import pytest
from tally_mirror.config import MirrorConfig
from tally_mirror.entities import ENTITY_KINDS
from tally_mirror.errors import ValidationError
from tally_mirror.models import get_schema_sql
from tally_mirror.sync import MasterSync, main, read_batch_file


class TestMirrorConfig:
    """Tests for configuration handling."""

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("TALLY_MIRROR_BACKEND", "Memory")
        monkeypatch.setenv("TALLY_MIRROR_SKIP_STALE", "yes")
        monkeypatch.setenv("TALLY_MIRROR_CONFLICT_RETRIES", "5")
        config = MirrorConfig.from_env()
        assert config.backend == "memory"
        assert config.skip_stale_revisions is True
        assert config.conflict_retry_attempts == 5

    def test_config_validation(self):
        config = MirrorConfig(backend="sqlite", db_schema="", conflict_retry_attempts=0)
        errors = config.validate()
        assert len(errors) == 3

    def test_memory_config_is_valid(self, config):
        assert config.validate() == []


class TestExampleScenario:
    """Tenant T1: sync Cash at alter id 10, resend it, then rename at 12."""

    def test_cash_ledger(self, sync):
        batch = [{"cmpId": "T1", "masterId": 5, "alterId": 10, "name": "Cash"}]

        sync.sync_batch("ledger", batch)
        assert sync.get_current_max_revision("T1") == 10

        sync.sync_batch("ledger", batch)
        ledgers = sync.entity_stores["ledger"]
        assert ledgers.count("T1") == 1
        assert ledgers.find_by_tenant_and_external_id("T1", 5).name == "Cash"

        sync.sync_batch("ledger", [{"cmpId": "T1", "masterId": 5, "alterId": 12, "name": "Cash-in-Hand"}])
        row = ledgers.find_by_tenant_and_external_id("T1", 5)
        assert row.name == "Cash-in-Hand"
        assert row.revision == 12
        assert sync.get_current_max_revision("T1") == 12


class TestMasterSync:

    def test_upsert(self, sync, make_payload):
        saved = sync.upsert("costcenter", make_payload("costcenter", category="Primary Cost Category"))
        assert saved.attributes["category"] == "Primary Cost Category"

    def test_acknowledge_after_clean_batch(self, sync, make_payload):
        batch = [make_payload(master_id=1, alter_id=40), make_payload(master_id=2, alter_id=41)]
        sync.sync_batch("ledger", batch, tenant_id="T1", acknowledge=True)

        assert sync.get_last_acknowledged_revision("T1") == 41
        assert sync.tracker.get_cursor("T1").entity_kind == "ledger"

    def test_no_acknowledge_after_partial_batch(self, sync, make_payload):
        batch = [make_payload(master_id=1, alter_id=40), make_payload(master_id=None)]
        sync.sync_batch("ledger", batch, acknowledge=True)

        assert sync.get_last_acknowledged_revision("T1") == 0
        assert sync.get_current_max_revision("T1") == 40

    def test_manual_acknowledgement(self, sync):
        cursor = sync.record_acknowledgement("T1", 77, "vouchertype")
        assert cursor.last_acknowledged_revision == 77
        assert sync.sync_status("T1")["drift"] == -77

    def test_maxima_cover_every_kind(self, sync):
        assert set(sync.get_all_entity_kind_maxima("T1")) == set(ENTITY_KINDS)

    def test_find_by_guid_and_active_listing(self, sync, make_payload):
        sync.upsert("ledger", make_payload(master_id=1, guid="g-1", name="Cash"))
        sync.upsert("ledger", make_payload(master_id=2, guid="g-2", name="Suspense", isActive=False))

        assert sync.find_by_guid("ledgers", "T1", "g-2").name == "Suspense"
        assert sync.find_by_guid("ledger", "T2", "g-1") is None
        assert [r.name for r in sync.list_masters("ledger", "T1", active_only=True)] == ["Cash"]

    def test_missing_store_rejected(self, stores, config):
        entity_stores, cursor_store = stores
        del entity_stores["ledger"]
        with pytest.raises(ValueError):
            MasterSync(config, entity_stores=entity_stores, cursor_store=cursor_store)

    def test_memory_backend_builds_own_stores(self, config):
        with MasterSync(config) as sync:
            assert sync.database is None
            sync.initialize_schema()
            assert sync.get_current_max_revision("T1") == 0


class TestSchema:

    def test_schema_has_every_table(self):
        ddl = get_schema_sql("tally_mirror")
        for kind in ENTITY_KINDS.values():
            assert f"CREATE TABLE IF NOT EXISTS tally_mirror.{kind.table}" in ddl
            assert f"uq_{kind.table}_tenant_master UNIQUE (tenant_id, external_id)" in ddl
        assert "tally_mirror.sync_cursor" in ddl

    def test_schema_has_kind_columns(self):
        ddl = get_schema_sql("mirror_test")
        assert "gst_registration_date DATE" in ddl
        assert "opening_balance DOUBLE PRECISION" in ddl


class TestBatchFile:

    def test_read_list(self, tmp_path):
        path = tmp_path / "ledgers.json"
        path.write_text(json.dumps([{"masterId": 1}]), encoding="utf-8")
        assert read_batch_file(path) == [{"masterId": 1}]

    def test_read_data_envelope(self, tmp_path):
        path = tmp_path / "ledgers.json"
        path.write_text(json.dumps({"data": [{"masterId": 1}]}), encoding="utf-8")
        assert read_batch_file(path) == [{"masterId": 1}]

    def test_read_rejects_object(self, tmp_path):
        path = tmp_path / "ledgers.json"
        path.write_text(json.dumps({"masterId": 1}), encoding="utf-8")
        with pytest.raises(ValidationError):
            read_batch_file(path)


class TestCli:

    def _write(self, tmp_path, records):
        path = tmp_path / "batch.json"
        path.write_text(json.dumps(records), encoding="utf-8")
        return str(path)

    def test_load(self, tmp_path, capsys):
        path = self._write(
            tmp_path,
            [
                {"cmpId": 42, "masterId": 1, "alterId": 3, "ledName": "Cash"},
                {"cmpId": 42, "masterId": 2, "alterId": 4, "ledName": "Bank"},
            ],
        )
        code = main(["--memory", "load", path, "--entity", "ledgers", "--tenant", "42", "--ack"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["totalProcessed"] == 2
        assert output["maxAlterId"] == 4

    def test_load_partial_failure(self, tmp_path, capsys):
        path = self._write(tmp_path, [{"cmpId": 42, "masterId": 1}, {"cmpId": 42}])
        code = main(["--memory", "load", path, "--entity", "group"])

        output = json.loads(capsys.readouterr().out)
        assert code == 1
        assert output["totalProcessed"] == 1
        assert output["firstError"]

    def test_load_mixed_tenants(self, tmp_path):
        path = self._write(tmp_path, [{"cmpId": 1, "masterId": 1}, {"cmpId": 2, "masterId": 1}])
        assert main(["--memory", "load", path, "--entity", "group"]) == 1

    def test_unknown_entity(self, tmp_path):
        path = self._write(tmp_path, [])
        assert main(["--memory", "load", path, "--entity", "vouchers"]) == 2

    def test_missing_file(self, tmp_path):
        assert main(["--memory", "load", str(tmp_path / "nope.json"), "--entity", "group"]) == 2

    def test_status(self, capsys):
        assert main(["--memory", "status", "--tenant", "42"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["currentMaxRevision"] == 0

    def test_ack(self, capsys):
        assert main(["--memory", "ack", "--tenant", "42", "--revision", "9"]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["lastAlterID"] == 9
