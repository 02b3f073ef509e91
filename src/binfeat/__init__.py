"""binfeat: per-function feature extraction from compiled binaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from binfeat.version import __version__

if TYPE_CHECKING:
    from binfeat.config.models import BinFeatConfig
    from binfeat.labeling.rules import LabelRuleSet
    from binfeat.signatures.definitions import SignatureTable


@dataclass
class BinFeatContext:
    """Lazily-built state shared across CLI commands."""

    config: BinFeatConfig | None = None
    signatures: SignatureTable | None = None
    label_rules: LabelRuleSet | None = None

    def ensure_config(self) -> BinFeatConfig:
        if self.config is None:
            from binfeat.config.loader import load_config

            self.config = load_config()
        return self.config

    def ensure_signatures(self) -> SignatureTable:
        if self.signatures is None:
            from binfeat.signatures.loader import load_signature_table

            cfg = self.ensure_config()
            self.signatures = load_signature_table(
                cfg.rules.signatures_file,
                include_builtin=cfg.rules.include_builtin_signatures,
            )
        return self.signatures

    def ensure_label_rules(self) -> LabelRuleSet:
        if self.label_rules is None:
            from binfeat.labeling.rules import load_label_rules

            cfg = self.ensure_config()
            self.label_rules = load_label_rules(cfg.rules.label_rules_file)
        return self.label_rules


__all__ = ["BinFeatContext", "__version__"]
