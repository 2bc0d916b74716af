"""vCenter Migrator: dual-side session and command orchestration for vCenter migrations."""

__version__ = "0.1.0"
