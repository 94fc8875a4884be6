"""Normalization of heterogeneous customer documents into canonical records."""

from plotcrm.normalization.normalizer import normalize_record
from plotcrm.normalization.schema import CanonicalRecord

__all__ = ["CanonicalRecord", "normalize_record"]
