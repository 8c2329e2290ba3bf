"""Tests for the reconciliation engine."""
from pathlib import Path
from typing import Optional

import pytest

from asterisk_sync.pjsip.errors import ConfigWriteError
from asterisk_sync.pjsip.model import parse
from asterisk_sync.pjsip.store import PjsipConfigFile
from asterisk_sync.schema import Extension, Trunk
from asterisk_sync.sync.engine import ReconciliationEngine, ensure_transport_sections, identity_sort_key, merge_scanned
from asterisk_sync.sync.errors import LiveStatusError, ReconciliationPartialFailure, ReloadError
from asterisk_sync.sync.schema import Membership, ScannedExtension


class InMemoryRepository:
    """Dict-backed stand-in for the database."""

    def __init__(self, extensions=(), trunks=()):
        self.extensions = {e.extension_number: e for e in extensions}
        self.trunks = {t.name: t for t in trunks}

    def list_extensions(self):
        return list(self.extensions.values())

    def get_extension(self, number):
        return self.extensions.get(number)

    def upsert_extension(self, extension):
        self.extensions[extension.extension_number] = extension

    def delete_extension(self, number):
        return self.extensions.pop(number, None) is not None

    def list_trunks(self):
        return list(self.trunks.values())

    def get_trunk(self, name):
        return self.trunks.get(name)

    def upsert_trunk(self, trunk):
        self.trunks[trunk.name] = trunk

    def delete_trunk(self, name):
        return self.trunks.pop(name, None) is not None


class FakeReloader:
    def __init__(self, error: Optional[Exception] = None):
        self.calls = 0
        self.error = error

    def reload(self):
        self.calls += 1
        if self.error is not None:
            raise self.error


class FakeLiveStatus:
    def __init__(self, registrations=None, error: Optional[Exception] = None):
        self._registrations = registrations or {}
        self.error = error

    def endpoints(self):
        return []

    def endpoint(self, identity):
        return None

    def registrations(self):
        if self.error is not None:
            raise self.error
        return dict(self._registrations)


class FailingConfigFile(PjsipConfigFile):
    """Refuses to save changes whose message names a given identity."""

    def __init__(self, path: Path, fail_for: str):
        super().__init__(path)
        self.fail_for = fail_for

    def save(self, doc, message=None):
        if message and message.endswith(f" {self.fail_for}"):
            raise ConfigWriteError(f"disk full while writing {self.fail_for}")
        super().save(doc, message)


@pytest.fixture
def conf_path(tmp_path):
    return tmp_path / "pjsip.conf"


def reception() -> Extension:
    return Extension("101", name="Reception", secret="s3cr3t", codecs=["ulaw", "alaw"], max_contacts=2)


def make_engine(conf_path, repository, **kwargs):
    config_file = kwargs.pop("config_file", None) or PjsipConfigFile(conf_path)
    return ReconciliationEngine(repository, config_file, **kwargs)


class TestHelpers:
    """Tests for module-level helpers."""

    def test_identity_sort_key(self):
        """Numbers sort numerically, before names."""
        assert sorted(["provider", "1001", "200", "101"], key=identity_sort_key) == ["101", "200", "1001", "provider"]

    def test_merge_scanned_never_clears(self):
        """Fields missing from the file keep their database values."""
        existing = Extension("101", name="Reception", secret="old", codecs=["g722"], caller_id='"Desk" <101>')
        scanned = ScannedExtension("101", context="office", secret="new")
        merged = merge_scanned(existing, scanned)
        assert merged.context == "office"
        assert merged.secret == "new"
        assert merged.codecs == ["g722"]
        assert merged.caller_id == '"Desk" <101>'
        assert merged.name == "Reception"
        assert merged.enabled is True

    def test_merge_scanned_new_record(self):
        """A new record gets a default name and default codecs."""
        merged = merge_scanned(None, ScannedExtension("300"))
        assert merged.name == "Extension 300"
        assert merged.codecs == ["ulaw", "alaw", "g722"]

    def test_ensure_transports_replaces_partial_set(self):
        """A lone transport is replaced by the full pair at the top."""
        doc = parse("[101]\ntype=aor\n\n[transport-udp]\ntype=transport\n")
        assert ensure_transport_sections(doc)
        assert [s.name for s in doc.sections] == ["transport-udp", "transport-tcp", "101"]
        assert not ensure_transport_sections(doc)


class TestPush:
    """Tests for database to config pushes."""

    def test_push_single_extension(self, conf_path):
        """Pushing writes endpoint, auth and aor sections and reloads once."""
        reloader = FakeReloader()
        engine = make_engine(conf_path, InMemoryRepository([reception()]), reloader=reloader)

        result = engine.push_to_config("101", force=True)

        assert result.succeeded == ["101"]
        assert result.ok
        assert result.reloaded
        assert reloader.calls == 1
        doc = parse(conf_path.read_text())
        sections = doc.find_sections_by_name("101")
        assert [s.type for s in sections] == ["endpoint", "auth", "aor"]
        assert sections[0].get_all("allow") == ["ulaw", "alaw"]
        assert sections[0].get("disallow") == "all"
        assert sections[2].get("max_contacts") == "2"

    def test_transports_added_once(self, conf_path):
        """UDP and TCP transports lead a new file and are not duplicated."""
        engine = make_engine(conf_path, InMemoryRepository([reception()]))
        engine.push_to_config(force=True)
        engine.push_to_config(force=True)

        doc = parse(conf_path.read_text())
        assert doc.section_names()[:2] == ["transport-udp", "transport-tcp"]
        assert len(doc.find_sections_by_name("transport-udp")) == 1

    def test_manage_transports_off(self, conf_path):
        """Transports are left alone when not managed."""
        engine = make_engine(conf_path, InMemoryRepository([reception()]), manage_transports=False)
        engine.push_to_config(force=True)
        assert "transport-udp" not in parse(conf_path.read_text()).section_names()

    def test_push_is_idempotent(self, conf_path):
        """A second push with unchanged data changes nothing and does not reload."""
        reloader = FakeReloader()
        repository = InMemoryRepository([reception(), Extension("102"), Extension("103")])
        engine = make_engine(conf_path, repository, reloader=reloader)

        engine.push_to_config(force=True)
        first = conf_path.read_bytes()
        result = engine.push_to_config(force=True)

        assert conf_path.read_bytes() == first
        assert result.unchanged == ["101", "102", "103"]
        assert result.succeeded == []
        assert not result.reloaded
        assert reloader.calls == 1

    def test_no_duplicate_sections_after_change(self, conf_path):
        """Re-pushing a changed record replaces its sections."""
        repository = InMemoryRepository([reception()])
        engine = make_engine(conf_path, repository)
        engine.push_to_config("101", force=True)

        repository.extensions["101"].context = "office"
        result = engine.push_to_config("101", force=True)

        assert result.succeeded == ["101"]
        sections = parse(conf_path.read_text()).find_sections_by_name("101")
        assert len(sections) == 3
        assert sections[0].get("context") == "office"

    def test_hand_edited_sections_preserved(self, conf_path):
        """Unmanaged sections and comments survive byte for byte."""
        hand = (
            "; local tweaks\n"
            "[global]\n"
            "type=global\n"
            "user_agent=Office PBX   ; shown to phones\n"
            "\n"
            "[101]\n"
            "type=endpoint\n"
            "context=old\n"
        )
        conf_path.write_text(hand)
        engine = make_engine(conf_path, InMemoryRepository([reception()]), manage_transports=False)

        engine.push_to_config("101", force=True)

        text = conf_path.read_text()
        assert text.startswith(
            "; local tweaks\n[global]\ntype=global\nuser_agent=Office PBX   ; shown to phones\n"
        )
        assert "context=old" not in text

    def test_trunk_push(self, conf_path):
        """Trunks are pushed by name."""
        trunk = Trunk("provider", host="sip.example.net", username="acct", secret="pw")
        engine = make_engine(conf_path, InMemoryRepository(trunks=[trunk]))

        result = engine.push_to_config("provider", force=True)

        assert result.succeeded == ["provider"]
        types = [s.type for s in parse(conf_path.read_text()).find_sections_by_name("provider")]
        assert types == ["endpoint", "auth", "aor", "identify"]

    def test_disabled_records_skipped_in_full_push(self, conf_path):
        """A full push only writes enabled records."""
        repository = InMemoryRepository([reception(), Extension("102", enabled=False)])
        engine = make_engine(conf_path, repository)

        result = engine.push_to_config(force=True)

        assert result.succeeded == ["101"]
        assert "102" not in parse(conf_path.read_text()).section_names()

    def test_unknown_identity(self, conf_path):
        """An identity missing from the database fails without writing."""
        engine = make_engine(conf_path, InMemoryRepository())
        result = engine.push_to_config("999", force=True)
        assert "999" in result.failed
        assert not conf_path.exists()

    def test_failure_is_isolated(self, conf_path):
        """One identity failing does not stop or undo the others."""
        reloader = FakeReloader()
        repository = InMemoryRepository([reception(), Extension("102"), Extension("103")])
        config_file = FailingConfigFile(conf_path, fail_for="102")
        engine = make_engine(conf_path, repository, reloader=reloader, config_file=config_file)

        result = engine.push_to_config(force=True)

        assert result.succeeded == ["101", "103"]
        assert list(result.failed) == ["102"]
        assert "disk full" in result.failed["102"]
        assert result.exit_code == 1
        assert reloader.calls == 1
        names = parse(conf_path.read_text()).section_names()
        assert "101" in names and "103" in names
        assert "102" not in names
        with pytest.raises(ReconciliationPartialFailure):
            result.raise_for_failures()

    def test_reload_failure_keeps_write(self, conf_path):
        """A failed reload is reported but the file stays written."""
        reloader = FakeReloader(error=ReloadError("module not loaded"))
        engine = make_engine(conf_path, InMemoryRepository([reception()]), reloader=reloader)

        result = engine.push_to_config("101", force=True)

        assert result.succeeded == ["101"]
        assert result.reload_error == "module not loaded"
        assert not result.reloaded
        assert result.exit_code == 1
        assert "[101]" in conf_path.read_text()

    def test_confirmation_declined(self, conf_path):
        """Declining the prompt cancels the batch before any write."""
        prompts = []
        engine = make_engine(
            conf_path, InMemoryRepository([reception()]),
            confirm=lambda prompt: prompts.append(prompt) or False,
        )

        result = engine.push_to_config()

        assert result.cancelled
        assert len(prompts) == 1
        assert not conf_path.exists()

    def test_force_skips_confirmation(self, conf_path):
        """force bypasses the prompt."""
        def refuse(prompt):
            raise AssertionError("should not prompt")

        engine = make_engine(conf_path, InMemoryRepository([reception()]), confirm=refuse)
        assert engine.push_to_config(force=True).succeeded == ["101"]


    def test_push_keeps_include_after_replaced_section(self, conf_path):
        """An #include below a replaced identity stays at the end of the file."""
        conf_path.write_text("[101]\ntype=aor\nmax_contacts=1\n\n#include pjsip_custom.conf\n")
        engine = make_engine(conf_path, InMemoryRepository([reception()]), manage_transports=False)

        result = engine.push_to_config("101", force=True)

        assert result.succeeded == ["101"]
        text = conf_path.read_text()
        assert text.endswith("\n\n#include pjsip_custom.conf\n")
        assert [s.type for s in parse(text).find_sections_by_name("101")] == ["endpoint", "auth", "aor"]
        assert engine.push_to_config("101", force=True).unchanged == ["101"]
        assert conf_path.read_text() == text

    def test_push_keeps_include_above_replaced_section(self, conf_path):
        """An #include directly above a replaced identity stays in its place."""
        conf_path.write_text(
            "[100]\ntype=aor\n\n#include pjsip_custom.conf\n[101]\ntype=aor\nmax_contacts=1\n\n[102]\ntype=aor\n"
        )
        engine = make_engine(conf_path, InMemoryRepository([reception()]), manage_transports=False)

        engine.push_to_config("101", force=True)

        text = conf_path.read_text()
        assert text.startswith("[100]\ntype=aor\n\n#include pjsip_custom.conf\n\n[102]\ntype=aor\n\n[101]\n")

    def test_transport_write_failure_recorded(self, conf_path):
        """A failed transport write is reported in the result, not raised."""
        reloader = FakeReloader()
        config_file = FailingConfigFile(conf_path, "transports")
        engine = make_engine(conf_path, InMemoryRepository([reception()]), config_file=config_file, reloader=reloader)

        result = engine.push_to_config(force=True)

        assert "disk full" in result.failed["transports"]
        assert result.succeeded == []
        assert reloader.calls == 0
        assert not conf_path.exists()


class TestStatus:
    """Tests for three-way status."""

    CONFIG = (
        "[101]\ntype=endpoint\ncontext=from-internal\ntransport=transport-udp\n\n"
        "[101]\ntype=aor\nmax_contacts=2\n\n"
        "[102]\ntype=endpoint\ncontext=from-trunk\n\n"
        "[200]\ntype=endpoint\ncontext=from-internal\n\n"
        "[provider]\ntype=endpoint\ncontext=from-trunk\n"
    )

    def _engine(self, conf_path, live_status=None):
        conf_path.write_text(self.CONFIG)
        repository = InMemoryRepository([reception(), Extension("102", name="Lab"), Extension("105")])
        return make_engine(conf_path, repository, live_status=live_status)

    def test_membership(self, conf_path):
        """Each numeric identity is classified by where it was found."""
        statuses = {s.identity: s for s in self._engine(conf_path).status()}

        assert list(statuses) == ["101", "102", "105", "200"]
        assert statuses["101"].membership is Membership.BOTH
        assert statuses["101"].synced
        assert statuses["105"].membership is Membership.DB_ONLY
        assert statuses["200"].membership is Membership.CONFIG_ONLY
        assert statuses["200"].name == "Extension 200"

    def test_context_conflict(self, conf_path):
        """A different context shows up as a Context difference."""
        statuses = {s.identity: s for s in self._engine(conf_path).status()}
        assert statuses["102"].diff_fields == ["Context"]
        assert not statuses["102"].synced

    def test_registration(self, conf_path):
        """Live state fills in registered, absent endpoints are unregistered."""
        live = FakeLiveStatus({"101": True, "200": False})
        statuses = {s.identity: s for s in self._engine(conf_path, live).status()}
        assert statuses["101"].registered is True
        assert statuses["200"].registered is False
        assert statuses["105"].registered is False

    def test_registration_unknown(self, conf_path):
        """An unreachable server leaves registration unknown."""
        live = FakeLiveStatus(error=LiveStatusError("connection refused"))
        statuses = self._engine(conf_path, live).status()
        assert all(s.registered is None for s in statuses)

    def test_inline_comment_is_not_a_difference(self, conf_path):
        """A trailing ; comment on a value does not count as a change."""
        conf_path.write_text(
            "[101]\ntype=endpoint\ncontext=from-internal ; reception desk\ntransport=transport-udp\n\n"
            "[101]\ntype=aor\nmax_contacts=2\n"
        )
        [status] = make_engine(conf_path, InMemoryRepository([reception()])).status()
        assert status.diff_fields == []
        assert status.synced

    def test_template_header(self, conf_path):
        """Sections with a template suffix are still extensions."""
        conf_path.write_text(
            "[101]\ntype=endpoint\ncontext=from-internal\ntransport=transport-udp\n\n"
            "[101]\ntype=aor\nmax_contacts=2\n\n"
            "[102](phone-tpl)\ntype=endpoint\ncontext=sales\n"
        )
        statuses = {s.identity: s for s in make_engine(conf_path, InMemoryRepository([reception()])).status()}
        assert statuses["101"].synced
        assert statuses["102"].membership is Membership.CONFIG_ONLY

    def test_missing_config_file(self, conf_path):
        """Without a file every record is database-only."""
        engine = make_engine(conf_path, InMemoryRepository([reception()]))
        [status] = engine.status()
        assert status.membership is Membership.DB_ONLY


class TestPull:
    """Tests for config to database pulls."""

    def test_pull_merges(self, conf_path):
        """Config fields overwrite, missing fields are kept."""
        conf_path.write_text(
            "[101]\ntype=endpoint\ncontext=office\n\n"
            "[101]\ntype=auth\npassword=new\n\n"
            "[300]\ntype=endpoint\nallow=g722\n"
        )
        existing = Extension("101", name="Reception", secret="old", codecs=["g722"], caller_id="Desk")
        repository = InMemoryRepository([existing])
        engine = make_engine(conf_path, repository)

        result = engine.pull_from_config(force=True)

        assert result.succeeded == ["101", "300"]
        pulled = repository.get_extension("101")
        assert pulled.context == "office"
        assert pulled.secret == "new"
        assert pulled.codecs == ["g722"]
        assert pulled.caller_id == "Desk"
        assert repository.get_extension("300").codecs == ["g722"]

    def test_pull_strips_inline_comment(self, conf_path):
        """Comment text never reaches the database or the next push."""
        conf_path.write_text("[101]\ntype=endpoint\ncontext=from-internal ; reception desk\n")
        repository = InMemoryRepository([reception()])
        engine = make_engine(conf_path, repository, manage_transports=False)

        engine.pull_from_config("101", force=True)
        engine.push_to_config("101", force=True)

        assert repository.get_extension("101").context == "from-internal"
        assert "context=from-internal\n" in conf_path.read_text()
        assert "reception desk" not in conf_path.read_text()

    def test_pull_single_not_found(self, conf_path):
        """Pulling an identity absent from the file fails."""
        conf_path.write_text("[101]\ntype=endpoint\ncontext=office\n")
        engine = make_engine(conf_path, InMemoryRepository())
        result = engine.pull_from_config("555", force=True)
        assert "555" in result.failed

    def test_pull_cancelled(self, conf_path):
        """A declined prompt leaves the database untouched."""
        conf_path.write_text("[101]\ntype=endpoint\ncontext=office\n")
        repository = InMemoryRepository()
        engine = make_engine(conf_path, repository, confirm=lambda prompt: False)
        assert engine.pull_from_config().cancelled
        assert repository.list_extensions() == []


class TestRemove:
    """Tests for removing an identity from the file."""

    def test_remove(self, conf_path):
        """All sections of the identity go and the server reloads."""
        reloader = FakeReloader()
        repository = InMemoryRepository([reception(), Extension("102")])
        engine = make_engine(conf_path, repository, reloader=reloader)
        engine.push_to_config(force=True)

        result = engine.remove_from_config("101", force=True)

        assert result.succeeded == ["101"]
        assert reloader.calls == 2
        names = parse(conf_path.read_text()).section_names()
        assert "101" not in names
        assert "102" in names

    def test_remove_missing(self, conf_path):
        """Removing an absent identity is skipped without a write."""
        conf_path.write_text("[102]\ntype=aor\n")
        reloader = FakeReloader()
        engine = make_engine(conf_path, InMemoryRepository(), reloader=reloader)

        result = engine.remove_from_config("101", force=True)

        assert result.skipped == ["101"]
        assert reloader.calls == 0
        assert conf_path.read_text() == "[102]\ntype=aor\n"

    def test_ensure_transports(self, conf_path):
        """ensure_transports only writes when something is missing."""
        engine = make_engine(conf_path, InMemoryRepository())
        assert engine.ensure_transports()
        assert not engine.ensure_transports()
