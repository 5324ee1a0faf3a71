import itertools
import json
from collections.abc import Callable
from pathlib import Path

import pytest

from preservation_disko import Preservation, evaluate
from preservation_disko.errors import ConflictError, ValidationError
from preservation_disko.models import (
    BindMountSpec,
    ClanConfig,
    Declaration,
    MountEntry,
    PreservedFile,
    TmpfilesRule,
    UnitOverride,
)
from preservation_disko.observability import StructuredLogger


def test_default_evaluation_persists_nixos_state_and_machine_id() -> None:
    evaluated = evaluate()

    assert evaluated.persist_directories == ("/etc", "/var/lib/nixos")
    assert evaluated.bind_mount_dirs == ("/var/lib/nixos",)
    assert evaluated.file_systems == {
        "/var/lib/nixos": MountEntry(
            name="/var/lib/nixos",
            device="/persist/var/lib/nixos",
            fs_type="none",
            options=("bind", "X-fstrim.notrim"),
            needed_for_boot=False,
        ),
    }
    persisted = evaluated.preserve_at["/persist"]
    assert persisted.directories == ("/var/lib/nixos", "/var/lib/systemd", "/var/log")
    assert persisted.files == (
        PreservedFile(
            file="/etc/machine-id",
            how="symlink",
            in_initrd=True,
            create_link_target=True,
        ),
    )
    assert evaluated.tmpfiles == ()
    assert evaluated.unit_overrides == ()
    assert evaluated.initrd_systemd is True
    assert "mount --bind /mnt/persist/var/lib/nixos /mnt/var/lib/nixos" in evaluated.setup_commands


def test_clan_vars_without_facts_persist_sops_keys() -> None:
    evaluated = evaluate(Declaration(clan=ClanConfig(vars_generators=("openssh",))))

    assert evaluated.extra_bind_mounts["/var/lib/sops-nix"] == BindMountSpec(
        path="/var/lib/sops-nix",
        needed_for_boot=True,
    )
    assert evaluated.file_systems["/var/lib/sops-nix"].needed_for_boot is True
    assert evaluated.persist_directories == ("/etc", "/var/lib/nixos", "/var/lib/sops-nix")
    assert "/var/lib/sops-nix" in evaluated.preserve_at["/persist"].directories
    assert (
        "mount --bind /mnt/persist/var/lib/sops-nix /mnt/var/lib/sops-nix"
        in evaluated.setup_commands
    )


def test_clan_facts_preserve_secret_upload_directory_instead_of_sops() -> None:
    evaluated = evaluate(
        Declaration(
            clan=ClanConfig(
                facts_enable=True,
                secret_upload_directory="/var/lib/clan-secrets",
                vars_generators=("openssh",),
            ),
        ),
    )

    directories = evaluated.preserve_at["/persist"].directories
    assert "/var/lib/clan-secrets" in directories
    assert "/var/lib/sops-nix" not in directories
    assert "/var/lib/sops-nix" not in evaluated.extra_bind_mounts
    # Plain preserved directories are created at boot, not during installation.
    assert evaluated.persist_directories == ("/etc", "/var/lib/nixos")


def test_disabled_clan_facts_ignore_secret_directory() -> None:
    evaluated = evaluate(
        Declaration(clan=ClanConfig(facts_enable=False, secret_upload_directory="/var/lib/x")),
    )

    assert "/var/lib/x" not in evaluated.preserve_at["/persist"].directories


def test_bindmount_machine_id_adds_tmpfiles_and_commit_condition() -> None:
    evaluated = evaluate(Declaration(machine_id_mode="bindmount"))

    assert evaluated.tmpfiles == (
        TmpfilesRule(path="/sysroot/persist/etc", type="d", mode="0755"),
        TmpfilesRule(
            path="/sysroot/persist/etc/machine-id",
            type="f",
            mode="0644",
            argument="uninitialized",
        ),
    )
    assert evaluated.unit_overrides == (
        UnitOverride(
            unit="systemd-machine-id-commit.service",
            section="Unit",
            key="ConditionFirstBoot",
            value="true",
        ),
    )
    machine_id = evaluated.preserve_at["/persist"].files[0]
    assert machine_id.how == "bindmount"
    assert machine_id.create_link_target is False
    assert evaluated.persist_directories == ("/var/lib/nixos",)


def test_disabled_evaluation_emits_no_setup_commands() -> None:
    logger = StructuredLogger()
    evaluated = evaluate(Declaration(enable=False), logger=logger)

    assert evaluated.setup_commands == ""
    assert evaluated.persist_directories == ()
    assert evaluated.bind_mount_dirs == ()
    assert "/var/lib/nixos" in evaluated.file_systems
    assert logger.records_at_level("warning")


def test_custom_persistent_storage_path_moves_every_fragment() -> None:
    evaluated = evaluate(
        Declaration(persistent_storage_path="/nix/persist", install_mount_point="/target"),
    )

    assert set(evaluated.preserve_at) == {"/nix/persist"}
    assert evaluated.file_systems["/var/lib/nixos"].device == "/nix/persist/var/lib/nixos"
    assert "mkdir -p /target/nix/persist/etc" in evaluated.setup_commands
    assert "echo 'preservation-disko: setup complete (/nix/persist)'" in evaluated.setup_commands


def test_declared_file_systems_feed_derivation() -> None:
    evaluated = evaluate(
        Declaration(
            file_systems={
                "/srv": MountEntry(
                    name="/srv",
                    device="/persist/srv",
                    fs_type="none",
                    options=("bind",),
                ),
                "/boot": MountEntry(name="/boot", device="/dev/vda1", fs_type="vfat"),
            },
        ),
    )

    assert evaluated.bind_mount_dirs == ("/srv", "/var/lib/nixos")
    assert "/boot" not in evaluated.persist_directories


def test_declared_file_system_conflicting_with_bind_mount_is_rejected() -> None:
    with pytest.raises(ConflictError):
        evaluate(
            Declaration(
                file_systems={
                    "/var/lib/nixos": MountEntry(
                        name="/var/lib/nixos",
                        device="/dev/vdb1",
                        fs_type="ext4",
                    ),
                },
            ),
        )


def test_relative_paths_are_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        evaluate(Declaration(extra_bind_mounts={"var/lib/app": BindMountSpec(path="var/lib/app")}))

    assert excinfo.value.context["option"] == "extraBindMounts"


def test_preservation_builder_declarations() -> None:
    preservation = Preservation()
    preservation.preserve_directories("/var/lib/app")
    preservation.preserve_file("/root/.config/app/token")
    preservation.bind_mount("/var/lib/postgresql", needed_for_boot=True)

    evaluated = preservation.evaluate()

    assert evaluated.persist_directories == (
        "/etc",
        "/root/.config/app",
        "/var/lib/nixos",
        "/var/lib/postgresql",
    )
    assert "/var/lib/app" in evaluated.preserve_at["/persist"].directories
    assert evaluated.file_systems["/var/lib/postgresql"].needed_for_boot is True


def test_preservation_rejects_unknown_strategy() -> None:
    with pytest.raises(ValidationError):
        Preservation().preserve_file("/etc/adjtime", how="copy")  # type: ignore[arg-type]


def test_evaluation_is_deterministic() -> None:
    preservation = Preservation()
    preservation.bind_mount("/var/lib/b")
    preservation.bind_mount("/var/lib/a")

    assert preservation.evaluate() == preservation.evaluate()
    assert preservation.setup_commands() == preservation.setup_commands()


def test_evaluation_logs_each_stage() -> None:
    preservation = Preservation()
    preservation.evaluate()

    operations = [record["operation"] for record in preservation.logger.records]
    assert operations == ["merge", "detect_integrations", "derive", "synthesize"]
    assert all(record["level"] == "info" for record in preservation.logger.records)


def test_rootless_records_follow_storage_path_declared_later() -> None:
    token_first = Preservation()
    token_first.preserve_file("/root/.config/app/token")
    token_first.preserve_directories("/var/lib/app")
    token_first.declare(Declaration(persistent_storage_path="/nix/persist"))

    path_first = Preservation()
    path_first.declare(Declaration(persistent_storage_path="/nix/persist"))
    path_first.preserve_file("/root/.config/app/token")
    path_first.preserve_directories("/var/lib/app")

    evaluated = token_first.evaluate()
    assert evaluated == path_first.evaluate()
    assert set(evaluated.preserve_at) == {"/nix/persist"}
    assert "/var/lib/app" in evaluated.preserve_at["/nix/persist"].directories
    assert evaluated.persist_directories == ("/etc", "/root/.config/app", "/var/lib/nixos")


def test_explicit_root_is_kept_as_declared() -> None:
    preservation = Preservation()
    preservation.preserve_file("/etc/ssh/ssh_host_ed25519_key", root="/persist")
    preservation.declare(Declaration(persistent_storage_path="/nix/persist"))

    evaluated = preservation.evaluate()

    assert "/persist" in evaluated.preserve_at
    assert "/etc/ssh" not in evaluated.persist_directories


def test_builder_order_does_not_change_evaluation() -> None:
    steps: list[Callable[[Preservation], object]] = [
        lambda p: p.declare(Declaration(persistent_storage_path="/nix/persist")),
        lambda p: p.declare(Declaration(machine_id_mode="bindmount")),
        lambda p: p.preserve_file("/root/.config/app/token"),
        lambda p: p.preserve_directories("/var/lib/app", "/var/cache/app"),
        lambda p: p.bind_mount("/var/lib/postgresql", needed_for_boot=True),
        lambda p: p.declare(Declaration(clan=ClanConfig(vars_generators=("openssh",)))),
    ]

    results = set()
    reference = None
    for order in itertools.permutations(steps):
        preservation = Preservation()
        for step in order:
            step(preservation)
        evaluated = preservation.evaluate()
        if reference is None:
            reference = evaluated
        assert evaluated == reference
        results.add(evaluated.setup_commands)

    assert len(results) == 1
    assert reference is not None
    assert "/root/.config/app" in reference.persist_directories


def test_each_evaluation_replaces_previous_log_records() -> None:
    preservation = Preservation()
    preservation.setup_commands()
    preservation.setup_commands()
    preservation.evaluate()

    assert len(preservation.logger.records) == 4


def test_emit_report_holds_only_the_emitting_evaluation(tmp_path: Path) -> None:
    preservation = Preservation()
    preservation.setup_commands()

    emission = preservation.emit(tmp_path / "out")

    assert emission.report_path is not None
    report = json.loads(emission.report_path.read_text(encoding="utf-8"))
    assert [record["operation"] for record in report["logs"]] == [
        "merge",
        "detect_integrations",
        "derive",
        "synthesize",
        "emit_tree",
    ]
