"""
Configuration document: the chat client's configuration tree.

A document is a YAML mapping with the sections credkeep cares about:

    servers:            # list of blocks
      - address: irc.example.org
        chatnet: example
        password: hunter2
    chatnets:           # mapping of network name to block
      example:
        sasl_username: me
        sasl_password: hunter2
        autosendcmd: "/msg NickServ identify hunter2"
    proxies:            # list of blocks
      - address: proxy.example.org
        password: hunter2
    settings:
      credentials: {...}

Anything else in the file is preserved untouched.

Read hooks run right after parsing and write hooks run on a copy of the
tree right before serialization, so the in-memory tree always holds what the
rest of the application should see (plaintext) while the file holds what
the hooks produced (ciphertext, or nothing).
"""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import yaml

from credkeep.config.settings import ConfigurationError

logger = logging.getLogger(__name__)

Block = dict[str, Any]
DocumentHook = Callable[["ConfigDocument"], None]

LIST_SECTIONS = frozenset({"servers", "proxies"})
MAPPING_SECTIONS = frozenset({"chatnets"})


class ConfigDocument:
    """
    A parsed configuration tree bound to a file path.

    Usage:
        doc = ConfigDocument(Path("~/.credkeep/config.yaml"))
        doc.add_read_hook(manager.config_read_hook)
        doc.add_write_hook(manager.config_write_hook)
        doc.parse()
        for _, server in doc.blocks("servers"):
            ...
        doc.write()
    """

    def __init__(self, path: Path | None = None, data: dict[str, Any] | None = None) -> None:
        self.path = path
        self.data: dict[str, Any] = data if data is not None else {}
        self._read_hooks: list[DocumentHook] = []
        self._write_hooks: list[DocumentHook] = []

    # Hooks

    def add_read_hook(self, hook: DocumentHook) -> None:
        self._read_hooks.append(hook)

    def add_write_hook(self, hook: DocumentHook) -> None:
        self._write_hooks.append(hook)

    def remove_read_hook(self, hook: DocumentHook) -> None:
        if hook in self._read_hooks:
            self._read_hooks.remove(hook)

    def remove_write_hook(self, hook: DocumentHook) -> None:
        if hook in self._write_hooks:
            self._write_hooks.remove(hook)

    def run_read_hooks(self) -> None:
        for hook in list(self._read_hooks):
            hook(self)

    # Load / save

    @classmethod
    def open_raw(cls, path: Path) -> ConfigDocument:
        """
        Parse a file without running any hooks.

        Used to see values exactly as they are stored on disk.

        Raises:
            ConfigurationError: If the file is missing or cannot be parsed.
        """
        doc = cls(path)
        doc.parse(run_hooks=False, missing_ok=False)
        return doc

    def parse(self, run_hooks: bool = True, missing_ok: bool = True) -> None:
        """
        Load the tree from ``self.path``.

        Args:
            run_hooks: Whether to run read hooks after parsing.
            missing_ok: Treat a missing file as an empty document.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        if self.path is None:
            raise ConfigurationError("Configuration document has no path")

        if not self.path.exists():
            if not missing_ok:
                raise ConfigurationError(f"Config file not found: {self.path}")
            self.data = {}
        else:
            try:
                with open(self.path) as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.path}: {e}") from e
            except OSError as e:
                raise ConfigurationError(f"Cannot read {self.path}: {e}") from e

            if not isinstance(data, dict):
                raise ConfigurationError(f"Config root in {self.path} must be a mapping")
            self.data = data

        if run_hooks:
            self.run_read_hooks()

    def write(
        self,
        path: Path | None = None,
        mode: int | None = None,
        run_hooks: bool = True,
    ) -> None:
        """
        Serialize the tree to disk.

        Write hooks run against a deep copy, so they can encrypt or strip
        fields without changing what the application sees in memory.

        Args:
            path: Destination. Defaults to ``self.path``.
            mode: File permissions to apply (e.g. 0o600).
            run_hooks: Whether to run write hooks on the copy.

        Raises:
            ConfigurationError: If the file cannot be written.
        """
        target = path or self.path
        if target is None:
            raise ConfigurationError("Configuration document has no path")

        snapshot = ConfigDocument(target, copy.deepcopy(self.data))
        if run_hooks:
            for hook in list(self._write_hooks):
                hook(snapshot)

        content = yaml.safe_dump(snapshot.data, default_flow_style=False, sort_keys=False)
        try:
            _write_atomic(target, content, mode)
        except OSError as e:
            raise ConfigurationError(f"Cannot write {target}: {e}") from e

    # Tree access

    def section(self, name: str, create: bool = False) -> Any:
        """
        Return a top-level section, optionally creating it.

        ``servers`` and ``proxies`` are lists of blocks; ``chatnets`` and any
        other section are mappings.
        """
        value = self.data.get(name)
        if value is None and create:
            value = [] if name in LIST_SECTIONS else {}
            self.data[name] = value
        return value

    def blocks(self, name: str) -> Iterator[tuple[str | None, Block]]:
        """
        Iterate over the blocks of a section.

        Yields (key, block) pairs. Keys are None for list sections. Entries
        that are not mappings are skipped.
        """
        value = self.data.get(name)
        if isinstance(value, list):
            for block in value:
                if isinstance(block, dict):
                    yield None, block
        elif isinstance(value, dict):
            for key, block in value.items():
                if isinstance(block, dict):
                    yield str(key), block

    def add_block(self, name: str, key: str | None = None) -> Block:
        """
        Append a block to a list section, or get-or-create a keyed block in
        a mapping section.
        """
        section = self.section(name, create=True)
        if isinstance(section, list):
            block: Block = {}
            section.append(block)
            return block

        existing = section.get(key)
        if isinstance(existing, dict):
            return existing
        block = {}
        section[key] = block
        return block

    @staticmethod
    def get_str(block: Block, key: str) -> str | None:
        """Return a field as a string, or None if absent."""
        value = block.get(key)
        if value is None or isinstance(value, (dict, list)):
            return None
        return str(value)

    @staticmethod
    def set_str(block: Block, key: str, value: str | None) -> None:
        """Set a field, or remove it when ``value`` is None."""
        if value is None:
            block.pop(key, None)
        else:
            block[key] = value

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)


def _write_atomic(path: Path, content: str, mode: int | None) -> None:
    """
    Write text to a file via a temporary file and rename.

    Prevents partial writes from corrupting the file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")

    try:
        temp_path.write_text(content)

        if mode is not None:
            try:
                os.chmod(temp_path, mode)
            except OSError:
                # Windows or permission error - continue anyway
                logger.debug("Could not set permissions on %s", temp_path)

        temp_path.replace(path)

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise
