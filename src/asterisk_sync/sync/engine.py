"""Three-way reconciliation between database, pjsip.conf and the live server.

Every call is a one-shot batch over a snapshot. Writers hold the config
file lock for the whole parse, mutate, persist cycle, so two batches
against the same file are serialized rather than interleaved.
"""
import logging
from typing import Callable, Optional, Union

from ..ami.errors import AmiError
from ..pjsip.errors import PjsipConfigError
from ..pjsip.generator import TRANSPORT_NAMES, generate_sections, generate_transport_sections
from ..pjsip.model import ConfigDocument, ConfigSection
from ..pjsip.store import PjsipConfigFile
from ..schema import DEFAULT_CODECS, Extension, Trunk
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed, timed_section
from .diff import diff_fields
from .errors import SyncError
from .live_status import LiveStatusProvider, Reloader
from .repository import EndpointRepository
from .scanner import scan_extensions
from .schema import BatchResult, Membership, ScannedExtension, SyncStatus

logger = logging.getLogger(__name__)

ManagedEndpoint = Union[Extension, Trunk]
Confirm = Callable[[str], bool]


def identity_sort_key(identity: str) -> tuple:
    """Numeric identities first, in numeric order."""
    return (0, int(identity), "") if identity.isdigit() else (1, 0, identity)


def same_settings(existing: list[ConfigSection], generated: list[ConfigSection]) -> bool:
    """True when both lists carry the same sections and key/value pairs.

    Comments, blank lines and directives around the sections are ignored.
    """
    return [(s.name, s.items()) for s in existing] == [(s.name, s.items()) for s in generated]


def merge_scanned(existing: Optional[Extension], scanned: ScannedExtension) -> Extension:
    """Apply the fields a config file carries onto a database record.

    Fields the file does not express keep their current (or default)
    values and are never cleared.
    """
    number = scanned.extension_number
    if existing is None:
        record = Extension(extension_number=number, name=f"Extension {number}")
    else:
        record = Extension.from_dict(existing.to_dict())
        record.name = record.name or f"Extension {number}"

    if scanned.context:
        record.context = scanned.context
    if scanned.transport:
        record.transport = scanned.transport
    if scanned.caller_id:
        record.caller_id = scanned.caller_id
    if scanned.codecs:
        record.codecs = list(scanned.codecs)
    elif not record.codecs:
        record.codecs = list(DEFAULT_CODECS)
    if scanned.secret:
        record.secret = scanned.secret
    record.max_contacts = scanned.max_contacts
    record.qualify_frequency = scanned.qualify_frequency
    record.direct_media = scanned.direct_media
    record.enabled = True
    return record


def ensure_transport_sections(doc: ConfigDocument) -> bool:
    """Make sure UDP and TCP transports lead the document.

    Returns True if the document was changed.
    """
    if all(doc.has_section_with_type(name, "transport") for name in TRANSPORT_NAMES):
        return False
    for name in TRANSPORT_NAMES:
        doc.remove_sections_by_name(name)
    doc.prepend_sections(generate_transport_sections())
    return True


class ReconciliationEngine:
    """
    Keeps database records, pjsip.conf and the running server consistent.

    Usage:
        engine = ReconciliationEngine(repository, PjsipConfigFile(path), live_status, reloader)
        for row in engine.status():
            ...
        result = engine.push_to_config("101", force=True)
    """

    def __init__(
        self,
        repository: EndpointRepository,
        config_file: PjsipConfigFile,
        live_status: Optional[LiveStatusProvider] = None,
        reloader: Optional[Reloader] = None,
        confirm: Optional[Confirm] = None,
        manage_transports: bool = True,
    ):
        """
        Args:
            repository: Database collaborator holding extensions and trunks
            config_file: The pjsip.conf to reconcile
            live_status: Source of registration state; None leaves it unknown
            reloader: Triggers a server reload after writes; None skips reloads
            confirm: Asked before a batch changes anything unless ``force`` is set
            manage_transports: Add missing UDP/TCP transports when pushing
        """
        self.repository = repository
        self.config_file = config_file
        self.live_status = live_status
        self.reloader = reloader
        self.confirm = confirm
        self.manage_transports = manage_transports
        self.tracker = ChangeTracker(str(config_file.path))

    def _confirmed(self, prompt: str, force: bool) -> bool:
        if force or self.confirm is None:
            return True
        return bool(self.confirm(prompt))

    def _registrations(self) -> Optional[dict[str, bool]]:
        if self.live_status is None:
            return None
        try:
            return self.live_status.registrations()
        except (SyncError, AmiError, OSError) as e:
            logger.warning(f"Live status unavailable, registration unknown: {e}")
            return None

    def _reload(self, result: BatchResult) -> None:
        if self.reloader is None:
            return
        try:
            with timed_section("reload", target=self.config_file.path.name):
                self.reloader.reload()
            result.reloaded = True
        except (SyncError, AmiError, OSError) as e:
            logger.error(f"Configuration written but reload failed: {e}")
            result.reload_error = str(e)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @timed("status", target="pjsip")
    def status(self) -> list[SyncStatus]:
        """Compare database extensions with the config file and live state."""
        db = {e.extension_number: e for e in self.repository.list_extensions()}
        scanned = {s.extension_number: s for s in scan_extensions(self.config_file.read_text())}
        registrations = self._registrations()

        statuses = []
        for identity in sorted(set(db) | set(scanned), key=identity_sort_key):
            record = db.get(identity)
            found = scanned.get(identity)

            if record is not None and found is not None:
                membership = Membership.BOTH
                differences = diff_fields(record, found)
            elif record is not None:
                membership = Membership.DB_ONLY
                differences = []
            else:
                membership = Membership.CONFIG_ONLY
                differences = []

            statuses.append(SyncStatus(
                identity=identity,
                name=(record.name if record is not None and record.name else f"Extension {identity}"),
                membership=membership,
                registered=None if registrations is None else registrations.get(identity, False),
                diff_fields=differences,
            ))

        logger.info(f"Status: {len(statuses)} extensions compared")
        return statuses

    # ------------------------------------------------------------------
    # Database -> config
    # ------------------------------------------------------------------

    def _select_for_push(self, identity: Optional[str], result: BatchResult) -> list[ManagedEndpoint]:
        if identity is None:
            records: list[ManagedEndpoint] = [e for e in self.repository.list_extensions() if e.enabled]
            records.extend(t for t in self.repository.list_trunks() if t.enabled)
            return records

        record: Optional[ManagedEndpoint] = self.repository.get_extension(identity)
        if record is None:
            record = self.repository.get_trunk(identity)
        if record is None:
            result.failed[identity] = "not found in database"
            return []
        return [record]

    @timed("push_to_config", target="pjsip")
    def push_to_config(self, identity: Optional[str] = None, force: bool = False) -> BatchResult:
        """Write generated sections for one identity or every enabled record.

        Each identity replaces all sections sharing its name and is
        persisted on its own; a failure rolls that identity back and the
        batch carries on. The server is reloaded once if anything was
        written.
        """
        result = BatchResult(operation="push")
        records = self._select_for_push(identity, result)
        if not records:
            if not result.failed:
                logger.warning("No enabled records in database")
            return result

        if not self._confirmed(f"Push {len(records)} record(s) from database to {self.config_file.path}?", force):
            result.cancelled = True
            return result

        written = False
        with self.config_file.locked():
            doc = self.config_file.load()

            if self.manage_transports and ensure_transport_sections(doc):
                try:
                    self.config_file.save(doc, "Add SIP transports")
                except PjsipConfigError as e:
                    result.failed["transports"] = str(e)
                    logger.error(f"Failed to add transports: {e}")
                    self.tracker.log_change("ensure_transports", "transports", False, error=str(e))
                    return result
                self.tracker.log_change("ensure_transports", "transports", True)
                written = True

            for record in records:
                ident = record.identity
                snapshot = (list(doc.header), list(doc.sections), list(doc.footer), doc.trailing_newline)
                try:
                    sections = generate_sections(record)
                    if same_settings(doc.find_sections_by_name(ident), sections):
                        result.unchanged.append(ident)
                        logger.debug(f"{ident} already up to date")
                        continue
                    doc.remove_sections_by_name(ident)
                    doc.add_sections(sections)
                    self.config_file.save(doc, f"Push {type(record).__name__.lower()} {ident}")
                except Exception as e:
                    doc.header, doc.sections, doc.footer, doc.trailing_newline = snapshot
                    result.failed[ident] = str(e)
                    logger.error(f"Failed to push {ident}: {e}")
                    self.tracker.log_change("push", ident, False, error=str(e))
                    continue

                written = True
                result.succeeded.append(ident)
                logger.info(f"Pushed {ident} ({len(sections)} sections)")
                self.tracker.log_change("push", ident, True, {"sections": [s.type for s in sections]})

        if written:
            self._reload(result)
        logger.info(result.summary())
        return result

    # ------------------------------------------------------------------
    # Config -> database
    # ------------------------------------------------------------------

    @timed("pull_from_config", target="pjsip")
    def pull_from_config(self, identity: Optional[str] = None, force: bool = False) -> BatchResult:
        """Upsert extensions found in the config file into the database."""
        result = BatchResult(operation="pull")
        with self.config_file.locked():
            scanned = scan_extensions(self.config_file.read_text())

        if identity is not None:
            scanned = [s for s in scanned if s.extension_number == identity]
            if not scanned:
                result.failed[identity] = "not found in config"
                return result
        elif not scanned:
            logger.warning(f"No extensions found in {self.config_file.path}")
            return result

        if not self._confirmed(f"Pull {len(scanned)} extension(s) from {self.config_file.path} into the database?", force):
            result.cancelled = True
            return result

        for found in scanned:
            number = found.extension_number
            try:
                record = merge_scanned(self.repository.get_extension(number), found)
                self.repository.upsert_extension(record)
            except Exception as e:
                result.failed[number] = str(e)
                logger.error(f"Failed to pull {number}: {e}")
                self.tracker.log_change("pull", number, False, error=str(e))
                continue
            result.succeeded.append(number)
            self.tracker.log_change("pull", number, True)

        logger.info(result.summary())
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    @timed("remove_from_config", target="pjsip")
    def remove_from_config(self, identity: str, force: bool = False) -> BatchResult:
        """Delete every section named ``identity`` and reload."""
        result = BatchResult(operation="remove")
        if not self._confirmed(f"Remove {identity} from {self.config_file.path}?", force):
            result.cancelled = True
            return result

        with self.config_file.locked():
            doc = self.config_file.load()
            removed = doc.remove_sections_by_name(identity)
            if not removed:
                result.skipped.append(identity)
                logger.info(f"{identity} has no sections in {self.config_file.path}")
                return result
            try:
                self.config_file.save(doc, f"Remove {identity}")
            except PjsipConfigError as e:
                result.failed[identity] = str(e)
                self.tracker.log_change("remove", identity, False, error=str(e))
                return result

        result.succeeded.append(identity)
        logger.info(f"Removed {removed} sections for {identity}")
        self.tracker.log_change("remove", identity, True, {"sections": removed})
        self._reload(result)
        return result

    def ensure_transports(self) -> bool:
        """Add missing transports to the config file; True if it changed."""
        with self.config_file.locked():
            doc = self.config_file.load()
            if not ensure_transport_sections(doc):
                return False
            self.config_file.save(doc, "Add SIP transports")
        self.tracker.log_change("ensure_transports", "transports", True)
        self._reload(BatchResult(operation="ensure_transports"))
        return True
