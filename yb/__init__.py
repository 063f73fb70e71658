"""yb — reconcile a multi-repository Yocto checkout against a shared spec."""

__version__ = "0.1.0"
