import pytest

from preservation_disko.compiler.emit_script import synthesize
from preservation_disko.errors import ValidationError

HEADER = (
    "# === Preservation Setup Commands ===\n"
    "# Auto-generated by preservation-disko\n"
    "# These commands ensure all preservation targets exist during installation\n"
    "# Persistent storage path: /persist\n"
)


def test_synthesize_golden_output() -> None:
    script = synthesize(
        ("/etc", "/var/lib/sops-nix"),
        ("/var/lib/sops-nix",),
        install_mount_point="/mnt",
        persistent_storage_path="/persist",
    )

    assert script == (
        HEADER
        + "\n"
        + "# Create persistent directories\n"
        + "mkdir -p /mnt/persist/etc\n"
        + "mkdir -p /mnt/persist/var/lib/sops-nix\n"
        + "\n"
        + "# Create ephemeral mount points (on tmpfs root)\n"
        + "mkdir -p /mnt/etc\n"
        + "mkdir -p /mnt/var/lib/sops-nix\n"
        + "\n"
        + "# Create bind mounts for boot-critical directories\n"
        + "mount --bind /mnt/persist/var/lib/sops-nix /mnt/var/lib/sops-nix\n"
        + "\n"
        + "echo 'preservation-disko: setup complete (/persist)'\n"
    )


def test_synthesize_orders_persistent_then_ephemeral_then_binds() -> None:
    paths = ("/etc", "/var/lib/nixos", "/var/lib/sops-nix")
    binds = ("/var/lib/nixos", "/var/lib/sops-nix")
    lines = synthesize(
        paths,
        binds,
        install_mount_point="/mnt",
        persistent_storage_path="/persist",
    ).splitlines()

    for path in paths:
        persistent = lines.index(f"mkdir -p /mnt/persist{path}")
        ephemeral = lines.index(f"mkdir -p /mnt{path}")
        assert persistent < ephemeral
        if path in binds:
            assert ephemeral < lines.index(f"mount --bind /mnt/persist{path} /mnt{path}")


def test_synthesize_directory_commands_are_idempotent() -> None:
    lines = synthesize(
        ("/etc", "/var/log"),
        (),
        install_mount_point="/mnt",
        persistent_storage_path="/persist",
    ).splitlines()

    mkdirs = [line for line in lines if line.startswith("mkdir")]
    assert len(mkdirs) == 4
    assert all(line.startswith("mkdir -p ") for line in mkdirs)


def test_synthesize_empty_inputs_emit_only_header_and_marker() -> None:
    script = synthesize((), (), install_mount_point="/mnt", persistent_storage_path="/persist")

    assert script == HEADER + "\necho 'preservation-disko: setup complete (/persist)'\n"
    assert "mkdir" not in script
    assert "mount" not in script


def test_synthesize_disabled_is_empty() -> None:
    script = synthesize(
        ("/etc",),
        ("/etc",),
        install_mount_point="/mnt",
        persistent_storage_path="/persist",
        enabled=False,
    )

    assert script == ""


def test_synthesize_honours_custom_roots() -> None:
    script = synthesize(
        ("/var/lib/nixos",),
        ("/var/lib/nixos",),
        install_mount_point="/target",
        persistent_storage_path="/nix/persist",
    )

    assert "mkdir -p /target/nix/persist/var/lib/nixos" in script
    assert "mkdir -p /target/var/lib/nixos" in script
    assert "mount --bind /target/nix/persist/var/lib/nixos /target/var/lib/nixos" in script
    assert "# Persistent storage path: /nix/persist" in script


def test_synthesize_quotes_paths_with_whitespace() -> None:
    script = synthesize(
        ("/srv/my data",),
        ("/srv/my data",),
        install_mount_point="/mnt",
        persistent_storage_path="/persist",
    )

    assert "mkdir -p '/mnt/persist/srv/my data'" in script
    assert "mount --bind '/mnt/persist/srv/my data' '/mnt/srv/my data'" in script


def test_synthesize_rejects_newlines_in_paths() -> None:
    with pytest.raises(ValidationError) as excinfo:
        synthesize(
            ("/etc\nrm -rf /",),
            (),
            install_mount_point="/mnt",
            persistent_storage_path="/persist",
        )

    assert excinfo.value.code == "E_VALIDATION"
