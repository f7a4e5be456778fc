"""Catalog endpoints — experiences and event extras.

Read-only views of the YAML catalog loaded at startup.
"""

from fastapi import APIRouter, Depends, Query

from flow_engine import FlowCatalog
from flow_engine.models.experience import Experience, ExtrasConfig

from flow_server.dependencies import get_catalog

router = APIRouter(tags=["reference"])


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/experiences")
def list_experiences(
    include_deleted: bool = Query(False),
    catalog: FlowCatalog = Depends(get_catalog),
) -> list[dict]:
    """Return a summary of every experience in the catalog."""
    return [
        {
            "id": exp.id,
            "name": exp.name,
            "status": exp.status.value,
            "step_count": len(exp.steps),
            "step_types": [s.type for s in exp.ordered_steps()],
        }
        for exp in catalog.list_experiences(include_deleted=include_deleted)
    ]


@router.get("/experiences/{experience_id}")
def get_experience(
    experience_id: str,
    catalog: FlowCatalog = Depends(get_catalog),
) -> Experience:
    """Return the full experience definition."""
    experience = catalog.get_experience(experience_id)
    if experience is None:
        raise ValueError(f"Experience not found: {experience_id}")
    return experience


@router.get("/events/{event_id}/extras")
def get_event_extras(
    event_id: str,
    catalog: FlowCatalog = Depends(get_catalog),
) -> ExtrasConfig:
    """Return the extras slot configuration for an event."""
    return catalog.get_event(event_id).extras
