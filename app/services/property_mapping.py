"""
Dealership Property Mapping - Static dealership to GA4 / Search Console assignments.

The mapping ships as a JSON data file (app/data/dealership_property_mappings.json)
and can be replaced at deploy time with PROPERTY_MAPPINGS_PATH. Lookups are
pure and in-memory; the registry is loaded once per process.
"""

import json
from collections.abc import Iterable, Iterator
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from app.config import settings
from app.exceptions import PropertyMappingError
from app.models.domain import DealershipPropertyMapping
from app.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAPPINGS_PATH = Path(__file__).parent.parent / "data" / "dealership_property_mappings.json"


class _MappingEntry(BaseModel):
    dealership_id: str = Field(..., min_length=1)
    dealership_name: str = Field(..., min_length=1)
    ga4_property_id: str | None = None
    search_console_url: str | None = None
    has_access: bool = False
    notes: str | None = None


class _MappingFile(BaseModel):
    mappings: list[_MappingEntry]
    # GA4 properties deliberately shared by more than one dealership
    shared_ga4_properties: list[str] = Field(default_factory=list)


class PropertyMappingRegistry:
    """In-memory lookup over the dealership property mappings."""

    def __init__(
        self,
        mappings: Iterable[DealershipPropertyMapping],
        shared_ga4_properties: Iterable[str] = (),
    ) -> None:
        self._mappings: tuple[DealershipPropertyMapping, ...] = tuple(mappings)
        self._shared_ga4_properties = frozenset(shared_ga4_properties)
        self._by_id: dict[str, DealershipPropertyMapping] = {}
        for mapping in self._mappings:
            # First entry wins; duplicates are reported by validate()
            self._by_id.setdefault(mapping.dealership_id, mapping)

    @classmethod
    def from_file(cls, path: Path) -> "PropertyMappingRegistry":
        """Load and parse a mapping file, raising PropertyMappingError on bad content."""
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise PropertyMappingError(f"mapping file not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise PropertyMappingError(f"{path} is not valid JSON: {exc}") from exc

        try:
            parsed = _MappingFile.model_validate(raw)
            mappings = [
                DealershipPropertyMapping(
                    dealership_id=entry.dealership_id,
                    dealership_name=entry.dealership_name,
                    ga4_property_id=entry.ga4_property_id,
                    search_console_url=entry.search_console_url,
                    has_access=entry.has_access,
                    notes=entry.notes,
                )
                for entry in parsed.mappings
            ]
        except (ValidationError, ValueError) as exc:
            raise PropertyMappingError(f"{path}: {exc}") from exc

        return cls(mappings, parsed.shared_ga4_properties)

    def __iter__(self) -> Iterator[DealershipPropertyMapping]:
        return iter(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)

    # ========================================================================
    # Lookups
    # ========================================================================

    def get(self, dealership_id: str) -> DealershipPropertyMapping | None:
        return self._by_id.get(dealership_id)

    def find_by_name(self, dealership_name: str) -> DealershipPropertyMapping | None:
        """Case-insensitive match on the dealership's display name."""
        wanted = dealership_name.strip().lower()
        for mapping in self._mappings:
            if mapping.dealership_name.lower() == wanted:
                return mapping
        return None

    def find(self, dealership_id: str, dealership_name: str | None = None) -> DealershipPropertyMapping | None:
        """Look up by ID first, then by name."""
        mapping = self.get(dealership_id)
        if mapping is None and dealership_name:
            mapping = self.find_by_name(dealership_name)
        return mapping

    def has_mapping(self, dealership_id: str) -> bool:
        return dealership_id in self._by_id

    def get_ga4_property_id(self, dealership_id: str) -> str | None:
        mapping = self.get(dealership_id)
        return mapping.ga4_property_id if mapping else None

    def get_search_console_url(self, dealership_id: str) -> str | None:
        mapping = self.get(dealership_id)
        return mapping.search_console_url if mapping else None

    def has_ga4_access(self, dealership_id: str) -> bool:
        mapping = self.get(dealership_id)
        return mapping.has_ga4_access if mapping else False

    def dealerships_with_ga4_access(self) -> list[DealershipPropertyMapping]:
        return [m for m in self._mappings if m.has_ga4_access]

    # ========================================================================
    # Validation
    # ========================================================================

    def find_duplicate_ga4_properties(self) -> dict[str, list[str]]:
        """
        GA4 property IDs assigned to more than one dealership.

        Properties listed in shared_ga4_properties are excluded.
        """
        owners: dict[str, list[str]] = {}
        for mapping in self._mappings:
            if mapping.ga4_property_id is None:
                continue
            owners.setdefault(mapping.ga4_property_id, []).append(mapping.dealership_id)

        return {
            property_id: dealerships
            for property_id, dealerships in owners.items()
            if len(dealerships) > 1 and property_id not in self._shared_ga4_properties
        }

    def validate(self) -> list[str]:
        """Return human-readable problems; an empty list means the mapping is sound."""
        problems: list[str] = []

        seen: set[str] = set()
        for mapping in self._mappings:
            if mapping.dealership_id in seen:
                problems.append(f"duplicate dealership id {mapping.dealership_id}")
            seen.add(mapping.dealership_id)

            if mapping.has_access and mapping.ga4_property_id is None:
                problems.append(
                    f"{mapping.dealership_id} is marked has_access but has no GA4 property id"
                )
            if mapping.search_console_url and not mapping.search_console_url.startswith(
                ("http://", "https://")
            ):
                problems.append(
                    f"{mapping.dealership_id} search console url is not http(s): "
                    f"{mapping.search_console_url}"
                )

        for property_id, dealerships in sorted(self.find_duplicate_ga4_properties().items()):
            problems.append(
                f"GA4 property {property_id} is shared by {', '.join(dealerships)}"
            )

        return problems


def load_property_mappings(path: str | Path | None = None) -> PropertyMappingRegistry:
    """Load the registry from an explicit path, the configured path, or the bundled file."""
    resolved = Path(path or settings.property_mappings_path or DEFAULT_MAPPINGS_PATH)
    registry = PropertyMappingRegistry.from_file(resolved)

    problems = registry.validate()
    if problems:
        logger.warning("property_mapping_problems", path=str(resolved), problems=problems)

    logger.info(
        "property_mappings_loaded",
        path=str(resolved),
        total=len(registry),
        with_ga4_access=len(registry.dealerships_with_ga4_access()),
    )
    return registry


@lru_cache
def get_property_mappings() -> PropertyMappingRegistry:
    """Process-wide registry (FastAPI dependency and service default)."""
    return load_property_mappings()
