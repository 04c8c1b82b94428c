from fastapi import APIRouter, Request

from ..lifecycle.api import lifecycles
from .registry import MODELS

router = APIRouter()


@router.get("/models/catalog")
def catalog(request: Request):
    """Registered models; ``state`` is set for the ones this app is serving."""
    served = {lc.model_id: lc for lc in lifecycles(request.app).values()}
    models = []
    for repo_id, spec in MODELS.items():
        lc = served.get(repo_id)
        models.append({
            "id": repo_id,
            "name": spec["name"],
            "kind": spec["kind"],
            "description": spec["description"],
            "tags": spec["tags"],
            "state": lc.state.kind.value if lc is not None else None,
        })
    return {"models": models}
