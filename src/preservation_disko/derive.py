"""Directory-set derivation for install-time persistence setup.

The installer needs two kinds of directories to exist before it writes the
target system:

- mount points of bind mounts whose source lives on the persistent partition,
  so they can be bind-mounted during installation;
- parent directories of files persisted as symlinks, so the link targets have
  somewhere to live.

Directories declared under ``preserve_at[...].directories`` are not included;
the runtime persistence subsystem creates those at boot.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from preservation_disko.models import MountEntry, PreserveAt


def bind_mount_dirs(
    mount_entries: Mapping[str, MountEntry] | Iterable[MountEntry],
    *,
    persistent_storage_path: str,
    enabled: bool = True,
) -> tuple[str, ...]:
    """Names of mount entries that bind-mount from persistent storage.

    Mappings are walked in key order, plain iterables in the order given.
    """
    if not enabled:
        return ()
    if isinstance(mount_entries, Mapping):
        entries: Iterable[MountEntry] = [mount_entries[name] for name in sorted(mount_entries)]
    else:
        entries = mount_entries
    return tuple(
        entry.name for entry in entries if entry.is_persistent_bind(persistent_storage_path)
    )


def symlink_parent_dirs(
    preserve_at: Mapping[str, PreserveAt],
    *,
    persistent_storage_path: str,
    enabled: bool = True,
) -> tuple[str, ...]:
    """Parent directories of files persisted as symlinks under the configured root."""
    if not enabled:
        return ()
    declared = preserve_at.get(persistent_storage_path)
    if declared is None:
        return ()
    return tuple(record.parent for record in declared.files if record.how == "symlink")


def derive(
    mount_entries: Mapping[str, MountEntry] | Iterable[MountEntry],
    preserve_at: Mapping[str, PreserveAt],
    *,
    persistent_storage_path: str,
    enabled: bool = True,
) -> tuple[str, ...]:
    """Return the unique, sorted directories the installer must pre-create."""
    if not enabled:
        return ()
    collected = bind_mount_dirs(
        mount_entries,
        persistent_storage_path=persistent_storage_path,
    ) + symlink_parent_dirs(
        preserve_at,
        persistent_storage_path=persistent_storage_path,
    )
    return tuple(sorted(set(collected)))


__all__ = ["bind_mount_dirs", "derive", "symlink_parent_dirs"]
