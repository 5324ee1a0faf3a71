"""Detection of the optional clan secret-management integration.

Clan is never a hard dependency. Callers pass the clan state they know about
(or ``None`` when the clan modules are absent) and the capability flags below
decide which extra directories and bind mounts get declared.
"""

from __future__ import annotations

from dataclasses import dataclass

from preservation_disko.models import ClanConfig


@dataclass(frozen=True, slots=True)
class ClanIntegration:
    facts_enabled: bool = False
    facts_secret_dir: str | None = None
    vars_enabled: bool = False

    @classmethod
    def detect(cls, clan: ClanConfig | None) -> ClanIntegration:
        if clan is None:
            return cls()
        facts_enabled = clan.facts_enable
        return cls(
            facts_enabled=facts_enabled,
            facts_secret_dir=clan.secret_upload_directory if facts_enabled else None,
            vars_enabled=bool(clan.vars_generators),
        )

    @property
    def wants_sops_nix(self) -> bool:
        """Vars without facts keep their decryption keys under /var/lib/sops-nix."""
        return self.vars_enabled and not self.facts_enabled

    @property
    def present(self) -> bool:
        return self.facts_enabled or self.vars_enabled


__all__ = ["ClanIntegration"]
