# ==============================================================================
# DATABASE MODULE
# ==============================================================================
# SQLite catalog of known mods and the fingerprints of their archives. Uses
# SQLAlchemy ORM for clean data access.
#
# Tables:
#   - mods:     Catalog items (one logical mod, many uploads/archives)
#   - archives: Fingerprint of each known VPK, linked to its mod
#
# The Database class implements CandidateStore, so it can be handed straight
# to MatchEngine.identify(). Lookups return plain CandidateRecord objects,
# ordered by primary key, never live ORM rows.
# ==============================================================================

import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text,
    UniqueConstraint, create_engine, func,
)
from sqlalchemy.orm import declarative_base, joinedload, relationship, sessionmaker

from .errors import CatalogUnavailable
from .fingerprint import Fingerprint
from .store import CandidateRecord, CandidateStore

logger = logging.getLogger(__name__)

# ==============================================================================
# SQLAlchemy Base Class
# ==============================================================================
# This is the base class that all our database models inherit from.
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==============================================================================
# MOD MODEL
# ==============================================================================
# A catalog item. Re-uploads and repacks of the same mod are separate archive
# rows pointing at the same mod.
#
# Example:
#   mod = Mod(name="Crimson Haze Skin", remote_id="gb-512345")
# ==============================================================================
class Mod(Base):
    """
    A known mod in the catalog.

    Attributes:
        id (int):           Unique identifier
        name (str):         Human-readable mod name
        remote_id (str):    Identifier on the mod hosting site (optional)
        author (str):       Mod author (optional)
        description (str):  Optional description
        created_at:         When this mod was added
    """
    __tablename__ = 'mods'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), unique=True, nullable=False)
    remote_id = Column(String(100), nullable=True)
    author = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    # Relationships - a mod can have many archives
    archives = relationship("ArchiveRecord", back_populates="mod", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Mod(id={self.id}, name='{self.name}')>"


# ==============================================================================
# ARCHIVE RECORD MODEL
# ==============================================================================
# The stored fingerprint of one VPK. Each identity column is indexed because
# it backs one matching tier.
# ==============================================================================
class ArchiveRecord(Base):
    """
    Fingerprint of a known archive.

    Attributes:
        id (int):                 Unique identifier
        mod_id (int):             Foreign key to the parent mod
        source_path (str):        Path inside the mod download, e.g. "pak01_dir.vpk"
        size_bytes (int):         File size
        fast_hash (str):          xxHash64 hex of the structural summary
        exact_digest (str):       SHA256 hex of the file (unique when present)
        content_signature (str):  Order-insensitive structural SHA256
        partial_digest (str):     Block hash tree root (optional)
        format_version (int):     VPK version
        entry_count (int):        Number of entries
        has_multiple_chunks (bool)
        has_inline_data (bool)
        scanned_at:               When the fingerprint was computed
    """
    __tablename__ = 'archives'
    __table_args__ = (
        UniqueConstraint('mod_id', 'source_path', name='archives_source_uk'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    mod_id = Column(Integer, ForeignKey('mods.id'), nullable=False)
    source_path = Column(String(500), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    fast_hash = Column(String(16), nullable=False, index=True)
    exact_digest = Column(String(64), nullable=True, unique=True)
    content_signature = Column(String(64), nullable=False, index=True)
    partial_digest = Column(String(64), nullable=True, index=True)
    format_version = Column(Integer, nullable=False)
    entry_count = Column(Integer, nullable=False)
    has_multiple_chunks = Column(Boolean, nullable=False, default=False)
    has_inline_data = Column(Boolean, nullable=False, default=False)
    scanned_at = Column(DateTime, default=_utcnow)

    # Relationship
    mod = relationship("Mod", back_populates="archives")

    def __repr__(self):
        return f"<ArchiveRecord(id={self.id}, mod_id={self.mod_id}, source='{self.source_path}')>"

    def to_candidate(self) -> CandidateRecord:
        """Detach into a read-only CandidateRecord (mod must be loaded)."""
        return CandidateRecord(
            id=str(self.id),
            content_signature=self.content_signature,
            fast_hash=self.fast_hash,
            file_size=self.size_bytes,
            entry_count=self.entry_count,
            format_version=self.format_version,
            has_multiple_chunks=bool(self.has_multiple_chunks),
            has_inline_data=bool(self.has_inline_data),
            exact_digest=self.exact_digest,
            partial_digest=self.partial_digest,
            mod_id=self.mod_id,
            mod_name=self.mod.name if self.mod is not None else None,
            source_path=self.source_path,
        )

    def apply_fingerprint(self, fingerprint: Fingerprint):
        """Copy the identity fields of a fingerprint onto this row."""
        self.size_bytes = fingerprint.file_size
        self.fast_hash = fingerprint.fast_hash
        self.exact_digest = fingerprint.exact_digest
        self.content_signature = fingerprint.content_signature
        self.partial_digest = fingerprint.partial_digest
        self.format_version = fingerprint.format_version
        self.entry_count = fingerprint.entry_count
        self.has_multiple_chunks = fingerprint.has_multiple_chunks
        self.has_inline_data = fingerprint.has_inline_data
        self.scanned_at = _utcnow()


# ==============================================================================
# DATABASE CLASS
# ==============================================================================
# Main database manager class. Handles connection, session management, the
# catalog write operations and the four candidate lookups.
#
# Usage:
#   db = Database("data/catalog.db")
#   mod = db.get_or_create_mod("Crimson Haze Skin")
#   db.add_archive(mod.id, "pak01_dir.vpk", fingerprint)
#   result = MatchEngine().identify(fingerprint, db)
# ==============================================================================
class Database(CandidateStore):
    """
    SQLite-backed catalog and candidate store.

    Attributes:
        db_path (str): Path to the SQLite database file
        engine: SQLAlchemy engine instance
        Session: SQLAlchemy session factory
    """

    def __init__(self, db_path: str):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
                    The file will be created if it doesn't exist.

        Raises:
            CatalogUnavailable: the parent directory cannot be created
        """
        self.db_path = db_path

        # Ensure the directory exists
        directory = os.path.dirname(db_path)
        if directory:
            try:
                os.makedirs(directory, exist_ok=True)
            except OSError as e:
                raise CatalogUnavailable(f"Cannot create catalog directory {directory}: {e}") from e

        self.engine = create_engine(f'sqlite:///{db_path}', echo=False)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

        # Create all tables if they don't exist
        Base.metadata.create_all(self.engine)

    def close(self):
        """Dispose of the connection pool."""
        self.engine.dispose()

    # ==========================================================================
    # MOD OPERATIONS
    # ==========================================================================

    def add_mod(self, name: str, remote_id: str = None, author: str = None,
                description: str = None) -> Mod:
        """
        Add a new mod to the catalog.

        Returns:
            The created Mod object
        """
        session = self.Session()
        try:
            mod = Mod(name=name, remote_id=remote_id, author=author, description=description)
            session.add(mod)
            session.commit()
            session.refresh(mod)
            logger.info("Added mod %s (id=%d)", mod.name, mod.id)
            return mod
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_mod_by_name(self, name: str) -> Optional[Mod]:
        """Get a mod by its name."""
        session = self.Session()
        try:
            return session.query(Mod).filter(Mod.name == name).first()
        finally:
            session.close()

    def get_or_create_mod(self, name: str) -> Mod:
        """Return the mod with this name, creating it if needed."""
        return self.get_mod_by_name(name) or self.add_mod(name)

    def get_all_mods(self) -> List[Mod]:
        """Get all mods."""
        session = self.Session()
        try:
            return session.query(Mod).order_by(Mod.id).all()
        finally:
            session.close()

    # ==========================================================================
    # ARCHIVE OPERATIONS
    # ==========================================================================

    def add_archive(self, mod_id: int, source_path: str, fingerprint: Fingerprint) -> CandidateRecord:
        """
        Record the fingerprint of an archive belonging to a mod.

        Re-scanning the same (mod, source path) updates the existing row. An
        archive whose exact digest is already catalogued is not duplicated;
        the record holding that digest is returned instead, and it may belong
        to another mod. A re-scanned row whose new digest is held by another
        record is removed, since its path now holds that known archive.

        Returns:
            The stored record, or the record already holding the exact digest
        """
        session = self.Session()
        try:
            row = session.query(ArchiveRecord).filter(
                ArchiveRecord.mod_id == mod_id,
                ArchiveRecord.source_path == source_path,
            ).first()

            if fingerprint.exact_digest:
                existing = session.query(ArchiveRecord).options(
                    joinedload(ArchiveRecord.mod)
                ).filter(
                    ArchiveRecord.exact_digest == fingerprint.exact_digest
                ).first()
                if existing is not None and (row is None or existing.id != row.id):
                    known = existing.to_candidate()
                    if row is not None:
                        logger.info(
                            "Record %d (%s) now holds catalogued archive %d; removing it",
                            row.id, source_path, existing.id,
                        )
                        session.delete(row)
                        session.commit()
                    else:
                        logger.info(
                            "Archive %s already catalogued as record %d", source_path, existing.id
                        )
                    return known

            if row is None:
                row = ArchiveRecord(mod_id=mod_id, source_path=source_path)
                session.add(row)

            row.apply_fingerprint(fingerprint)
            session.commit()
            session.refresh(row)
            logger.info("Catalogued %s for mod %d (record %d)", source_path, mod_id, row.id)
            return row.to_candidate()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_archives_for_mod(self, mod_id: int) -> List[CandidateRecord]:
        """Get all archive records belonging to a mod."""
        return self._find(ArchiveRecord.mod_id == mod_id)

    def delete_archive(self, record_id: int) -> bool:
        """Delete one archive record. Returns True if it existed."""
        session = self.Session()
        try:
            deleted = session.query(ArchiveRecord).filter(ArchiveRecord.id == record_id).delete()
            session.commit()
            if deleted:
                logger.info("Deleted archive record %d", record_id)
            return deleted > 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==========================================================================
    # CANDIDATE STORE LOOKUPS
    # ==========================================================================

    def find_by_exact_digest(self, digest: str) -> Optional[CandidateRecord]:
        matches = self._find(ArchiveRecord.exact_digest == digest, limit=1)
        return matches[0] if matches else None

    def find_by_content_signature(self, signature: str) -> List[CandidateRecord]:
        return self._find(ArchiveRecord.content_signature == signature)

    def find_by_fast_hash_and_size(self, fast_hash: str, file_size: int) -> List[CandidateRecord]:
        return self._find(
            ArchiveRecord.fast_hash == fast_hash,
            ArchiveRecord.size_bytes == file_size,
        )

    def find_by_partial_digest(self, digest: str) -> List[CandidateRecord]:
        return self._find(ArchiveRecord.partial_digest == digest)

    def _find(self, *criteria, limit: Optional[int] = None) -> List[CandidateRecord]:
        session = self.Session()
        try:
            query = session.query(ArchiveRecord).options(
                joinedload(ArchiveRecord.mod)
            ).filter(*criteria).order_by(ArchiveRecord.id)
            if limit is not None:
                query = query.limit(limit)
            return [row.to_candidate() for row in query.all()]
        finally:
            session.close()

    # ==========================================================================
    # STATISTICS
    # ==========================================================================

    def get_stats(self) -> dict:
        """Get overall statistics about the catalog."""
        session = self.Session()
        try:
            total_size = session.query(func.sum(ArchiveRecord.size_bytes)).scalar() or 0
            return {
                'mods': session.query(Mod).count(),
                'archives': session.query(ArchiveRecord).count(),
                'with_exact_digest': session.query(ArchiveRecord).filter(
                    ArchiveRecord.exact_digest.isnot(None)
                ).count(),
                'with_partial_digest': session.query(ArchiveRecord).filter(
                    ArchiveRecord.partial_digest.isnot(None)
                ).count(),
                'total_size': total_size,
                'total_size_mb': round(total_size / (1024 * 1024), 2),
            }
        finally:
            session.close()
