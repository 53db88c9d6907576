"""Local JSON store for the tracked state of managed sources."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from overmind_provider.exceptions import StateError
from overmind_provider.models import AWSSourceState

logger = structlog.get_logger(__name__)

STATE_FORMAT_VERSION = 1


class StateStore:
    """Tracked sources keyed by address, persisted as a single JSON file."""

    def __init__(self, state_file: Path) -> None:
        """Initialize the store. Nothing is read until :meth:`load`.

        Args:
            state_file: Path of the JSON state file.
        """
        self.state_file = Path(state_file)
        self._sources: dict[str, AWSSourceState] = {}
        self._logger = logger.bind(state_file=str(self.state_file))

    def load(self) -> "StateStore":
        """Load tracked sources from disk. A missing file means empty state.

        Raises:
            StateError: If the file exists but cannot be parsed.
        """
        if not self.state_file.exists():
            self._sources = {}
            return self

        try:
            with open(self.state_file) as f:
                data = json.load(f)
            sources = {
                address: AWSSourceState.from_dict(entry)
                for address, entry in data.get("sources", {}).items()
            }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise StateError(f"Failed to load state file {self.state_file}: {e}") from e

        version = data.get("version")
        if version != STATE_FORMAT_VERSION:
            raise StateError(
                f"Unsupported state file version {version!r} in {self.state_file}"
            )

        self._sources = sources
        self._logger.debug("Loaded tracked state", source_count=len(sources))
        return self

    def save(self) -> None:
        """Write tracked sources to disk, replacing the file atomically.

        Raises:
            StateError: If the file cannot be written.
        """
        payload: dict[str, Any] = {
            "version": STATE_FORMAT_VERSION,
            "sources": {
                address: state.to_dict()
                for address, state in sorted(self._sources.items())
            },
        }
        directory = self.state_file.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix=f".{self.state_file.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_path, self.state_file)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StateError(f"Failed to save state file {self.state_file}: {e}") from e
        self._logger.debug("Saved tracked state", source_count=len(self._sources))

    def get(self, address: str) -> AWSSourceState | None:
        """Return the tracked state at ``address``, if any."""
        return self._sources.get(address)

    def put(self, address: str, state: AWSSourceState) -> None:
        """Track ``state`` at ``address``, replacing what was there."""
        self._sources[address] = state

    def remove(self, address: str) -> AWSSourceState | None:
        """Stop tracking ``address``. Returns the dropped state, if any."""
        return self._sources.pop(address, None)

    def addresses(self) -> list[str]:
        """All tracked addresses, sorted."""
        return sorted(self._sources)

    def __contains__(self, address: object) -> bool:
        return address in self._sources

    def __len__(self) -> int:
        return len(self._sources)
