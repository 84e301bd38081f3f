"""Variant to calendar classification."""

from typing import Optional

NORTHERN = "northern"
SOUTHERN = "southern"


class CalendarDirectory:
    """Maps subscription variants to a calendar key and its AddEvent id."""

    def __init__(
        self,
        northern_variants: list[str],
        southern_variants: list[str],
        northern_calendar_id: Optional[str] = None,
        southern_calendar_id: Optional[str] = None,
    ):
        self._variants = {
            NORTHERN: {str(v).strip() for v in northern_variants},
            SOUTHERN: {str(v).strip() for v in southern_variants},
        }
        self._calendar_ids = {
            NORTHERN: northern_calendar_id or None,
            SOUTHERN: southern_calendar_id or None,
        }

    @classmethod
    def from_settings(cls, settings) -> "CalendarDirectory":
        return cls(
            northern_variants=settings.northern_variants,
            southern_variants=settings.southern_variants,
            northern_calendar_id=settings.addevent_northern_calendar_id,
            southern_calendar_id=settings.addevent_southern_calendar_id,
        )

    def key_for_variant(self, variant_id: Optional[str]) -> Optional[str]:
        """Calendar key for a variant, or None when it is not a subscription box."""
        variant = str(variant_id or "").strip()
        if not variant:
            return None
        for key, variants in self._variants.items():
            if variant in variants:
                return key
        return None

    def calendar_id(self, calendar_key: Optional[str]) -> Optional[str]:
        if calendar_key is None:
            return None
        return self._calendar_ids.get(calendar_key)
