"""Endpoint records store.

The engine talks to the database through ``EndpointRepository``. The
bundled implementation keeps records in a YAML file:

```yaml
extensions:
  "101":
    name: Reception
    secret: s3cr3t
    codecs: [ulaw, alaw]
trunks:
  provider:
    host: sip.example.net
    username: acct
```
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import yaml

from ..schema import Extension, Trunk

logger = logging.getLogger(__name__)


class EndpointRepository(Protocol):
    """Read and upsert access to extension and trunk records."""

    def list_extensions(self) -> list[Extension]:
        ...

    def get_extension(self, number: str) -> Optional[Extension]:
        ...

    def upsert_extension(self, extension: Extension) -> None:
        ...

    def delete_extension(self, number: str) -> bool:
        ...

    def list_trunks(self) -> list[Trunk]:
        ...

    def get_trunk(self, name: str) -> Optional[Trunk]:
        ...

    def upsert_trunk(self, trunk: Trunk) -> None:
        ...

    def delete_trunk(self, name: str) -> bool:
        ...


class YamlEndpointRepository:
    """Records kept in one YAML file, re-read on every call."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {"extensions": {}, "trunks": {}}
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}
        # Unquoted extension numbers load as ints
        data["extensions"] = {str(k): v for k, v in (data.get("extensions") or {}).items()}
        data["trunks"] = {str(k): v for k, v in (data.get("trunks") or {}).items()}
        return data

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # --- Extensions ---

    def list_extensions(self) -> list[Extension]:
        extensions = self._load()["extensions"]
        return [
            Extension.from_dict({**(fields or {}), "extension_number": str(number)})
            for number, fields in extensions.items()
        ]

    def get_extension(self, number: str) -> Optional[Extension]:
        fields = self._load()["extensions"].get(str(number))
        if fields is None:
            return None
        return Extension.from_dict({**fields, "extension_number": str(number)})

    def upsert_extension(self, extension: Extension) -> None:
        data = self._load()
        record = extension.to_dict()
        number = record.pop("extension_number")
        data["extensions"][number] = record
        self._save(data)
        logger.debug(f"Stored extension {number}")

    def delete_extension(self, number: str) -> bool:
        data = self._load()
        if data["extensions"].pop(str(number), None) is None:
            return False
        self._save(data)
        return True

    # --- Trunks ---

    def list_trunks(self) -> list[Trunk]:
        trunks = self._load()["trunks"]
        return [Trunk.from_dict({**(fields or {}), "name": name}) for name, fields in trunks.items()]

    def get_trunk(self, name: str) -> Optional[Trunk]:
        fields = self._load()["trunks"].get(name)
        if fields is None:
            return None
        return Trunk.from_dict({**fields, "name": name})

    def upsert_trunk(self, trunk: Trunk) -> None:
        data = self._load()
        record = trunk.to_dict()
        name = record.pop("name")
        data["trunks"][name] = record
        self._save(data)
        logger.debug(f"Stored trunk {name}")

    def delete_trunk(self, name: str) -> bool:
        data = self._load()
        if data["trunks"].pop(name, None) is None:
            return False
        self._save(data)
        return True
