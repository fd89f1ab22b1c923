from __future__ import annotations

import enum
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import Boolean, DateTime, Integer, Text, create_engine, false, func, select, true, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .credentials import Credential
from .errors import StoreError

log = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class WalletRow(Base):
    __tablename__ = "wallets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    privatekey: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    minted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false())
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class WalletStatus(str, enum.Enum):
    CREATED = "Created"
    MONITORING = "Monitoring"
    VERIFIED = "Verified"
    MINTED = "Minted"
    REMOVED = "Removed"


@dataclass(frozen=True)
class WalletRecord:
    address: str
    credential: Optional[Credential]
    status: WalletStatus
    created_at: Optional[datetime]

    @property
    def minted(self) -> bool:
        return self.status is WalletStatus.MINTED


def _to_record(row: WalletRow) -> WalletRecord:
    # Monitoring/Verified live in the scheduler; the table only knows these three.
    if not row.active:
        status = WalletStatus.REMOVED
    elif row.minted:
        status = WalletStatus.MINTED
    else:
        status = WalletStatus.CREATED
    credential = Credential(row.address, row.privatekey) if row.privatekey else None
    return WalletRecord(row.address, credential, status, row.created_at)


def _same_address(address: str):
    # Checksummed and lowercase spellings name the same wallet.
    return func.lower(WalletRow.address) == address.lower()


class WalletRegistry:
    """
    Durable wallet table. Every method is one transaction and is safe to
    call from several threads; writes are serialized by the registry.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.engine: Engine = create_engine(database_url, echo=echo)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        self._lock = threading.Lock()

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not create wallets table: {e}") from e

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        with self._lock:
            try:
                with self._sessions.begin() as session:
                    yield session
            except IntegrityError as e:
                raise StoreError(f"{action}: constraint violated ({e.orig})") from e
            except SQLAlchemyError as e:
                raise StoreError(f"{action}: {e}") from e

    def create(self, address: str, credential: Credential) -> WalletRecord:
        with self._transaction(f"create {address}") as session:
            row = WalletRow(address=address, privatekey=credential.private_key)
            session.add(row)
            session.flush()
            session.refresh(row)
            record = _to_record(row)
        log.debug("Stored wallet %s", address)
        return record

    def get(self, address: str) -> WalletRecord | None:
        """Looks the address up ignoring hex case."""
        with self._transaction(f"get {address}") as session:
            row = session.scalars(select(WalletRow).where(_same_address(address))).first()
            return _to_record(row) if row is not None else None

    def list_active(self) -> List[WalletRecord]:
        with self._transaction("list active wallets") as session:
            rows = session.scalars(
                select(WalletRow).where(WalletRow.active.is_(True)).order_by(WalletRow.id)
            ).all()
            return [_to_record(r) for r in rows]

    def mark_minted(self, address: str) -> bool:
        """Returns False when the wallet was already minted (or unknown)."""
        with self._transaction(f"mark {address} minted") as session:
            result = session.execute(
                update(WalletRow)
                .where(WalletRow.address == address, WalletRow.minted.is_(False))
                .values(minted=True)
            )
            changed = result.rowcount > 0
        if not changed:
            log.debug("Wallet %s already minted, nothing to update", address)
        return changed

    def mark_removed(self, address: str) -> bool:
        with self._transaction(f"remove {address}") as session:
            result = session.execute(
                update(WalletRow).where(_same_address(address)).values(active=False)
            )
            return result.rowcount > 0
