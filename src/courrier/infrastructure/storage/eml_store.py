from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from courrier.domain.entities import Mailbox
from courrier.domain.errors import StorageError
from courrier.infrastructure.email.imap.parsing import decode_modified_utf7

_ESCAPES = str.maketrans({ch: f"%{ord(ch):02X}" for ch in "%/\\:\x00"})


def safe_segment(name: str) -> str:
    """Make one path component filesystem-safe.

    Reserved characters are percent-encoded rather than replaced, so two
    different names never share a directory. '.' and '..' are encoded too
    and cannot escape the root.
    """
    if name in (".", ".."):
        return "%2E" * len(name)
    return name.translate(_ESCAPES) or "%"


def _dir_name(segment: str) -> str:
    decoded = decode_modified_utf7(segment)
    if decoded == segment and "&" in segment:
        # Not valid modified UTF-7: keep it apart from names that decode to the same text
        name = safe_segment(segment).replace("&", "%26")
    else:
        name = safe_segment(decoded)
    if name.endswith(".eml"):
        # A child mailbox must not share a name with a message file
        name = name[:-4] + "%2Eeml"
    return name


@dataclass(frozen=True)
class EmlStoreConfig:
    root: Path
    fsync: bool = True


class EmlFileStore:
    """Writes raw messages to <root>/<account>/<mailbox path>/<uid>.eml.

    The final path is deterministic, so a retried fetch overwrites the same
    file instead of creating a duplicate. Writes go to a temp file in the
    target directory and are renamed into place.
    """

    def __init__(self, cfg: EmlStoreConfig) -> None:
        self.cfg = cfg

    @property
    def root(self) -> Path:
        return self.cfg.root

    def mailbox_dir(self, mailbox: Mailbox) -> Path:
        parts = [safe_segment(mailbox.account)]
        parts.extend(_dir_name(seg) for seg in mailbox.segments)
        return self.cfg.root.joinpath(*parts)

    def path_for(self, mailbox: Mailbox, uid: int) -> Path:
        return self.mailbox_dir(mailbox) / f"{uid}.eml"

    def write(self, mailbox: Mailbox, uid: int, raw: bytes) -> Path:
        final = self.path_for(mailbox, uid)
        tmp_name: str | None = None
        try:
            final.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{uid}.", suffix=".tmp", dir=final.parent)
            with os.fdopen(fd, "wb") as fh:
                fh.write(raw)
                fh.flush()
                if self.cfg.fsync:
                    os.fsync(fh.fileno())
            os.replace(tmp_name, final)
            tmp_name = None
        except OSError as e:
            raise StorageError(f"Failed to store UID {uid} at {final}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Could not remove temp file {tmp_name}")
        return final


def eml_store_at(root: str | Path, fsync: bool = True) -> EmlFileStore:
    return EmlFileStore(EmlStoreConfig(root=Path(root), fsync=fsync))
