"""
Provides checks on downloaded extension archives before they replace an
installed copy.
"""

import json
import logging
import zipfile
from pathlib import Path, PurePosixPath

from ext_updater.exceptions import ArtifactError

log = logging.getLogger(__name__)


class ArtifactChecker:
    """A collection of static methods for validating extension archives."""

    METADATA_FILE = "metadata.json"

    @staticmethod
    def read_metadata(archive: zipfile.ZipFile) -> dict:
        try:
            raw = archive.read(ArtifactChecker.METADATA_FILE)
        except KeyError as e:
            raise ArtifactError("Archive has no metadata.json at its root.") from e
        try:
            metadata = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArtifactError(f"metadata.json is not valid JSON: {e}") from e
        if not isinstance(metadata, dict):
            raise ArtifactError("metadata.json does not contain an object.")
        return metadata

    @staticmethod
    def check_members(archive: zipfile.ZipFile) -> None:
        """Rejects members that would extract outside the target directory."""
        for name in archive.namelist():
            member = PurePosixPath(name)
            if member.is_absolute() or ".." in member.parts:
                raise ArtifactError(f"Archive member escapes its directory: {name}")

    @staticmethod
    def verify(artifact_path: Path, uuid: str) -> dict:
        """
        Checks that a downloaded file is an intact extension archive for ``uuid``.

        Args:
            artifact_path: Path to the downloaded zip file.
            uuid: The extension the archive is expected to contain.

        Returns:
            The archive's metadata.

        Raises:
            ArtifactError: If the archive is corrupt, unsafe or for another extension.
        """
        try:
            with zipfile.ZipFile(artifact_path) as archive:
                if (bad_member := archive.testzip()) is not None:
                    raise ArtifactError(f"Archive member '{bad_member}' is corrupt.")
                ArtifactChecker.check_members(archive)
                metadata = ArtifactChecker.read_metadata(archive)
        except zipfile.BadZipFile as e:
            raise ArtifactError(f"Downloaded file is not a zip archive: {e}") from e
        except OSError as e:
            raise ArtifactError(f"Downloaded file could not be read: {e}") from e

        if metadata.get("uuid") != uuid:
            raise ArtifactError(
                f"Archive is for '{metadata.get('uuid')}', expected '{uuid}'."
            )
        log.debug(f"Archive for '{uuid}' passed verification.")
        return metadata
