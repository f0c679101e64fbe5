import structlog
from fastapi import APIRouter, Depends, Path, Query

from lesson_agent.api.v1.errors import ERROR_RESPONSES, ApiError
from lesson_agent.api.v1.schemas.knowledge import SubgraphResponse
from lesson_agent.core.dependencies import get_container, get_request_overrides
from lesson_agent.domain.request_overrides import RequestOverrides
from lesson_agent.infrastructure.container import LessonContainer

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["knowledge"], responses=ERROR_RESPONSES)


@router.get(
    "/knowledge/{node_id}/subgraph",
    response_model=SubgraphResponse,
    response_model_by_alias=True,
)
async def get_knowledge_subgraph(
    node_id: str = Path(..., min_length=1),
    depth: int = Query(default=2, ge=1, le=5),
    container: LessonContainer = Depends(get_container),
    overrides: RequestOverrides = Depends(get_request_overrides),
) -> SubgraphResponse:
    """
    Nodes and links within `depth` hops of a knowledge point.
    An unknown id yields an empty graph.
    """
    log = logger.bind(trace_id=overrides.trace_id)
    try:
        subgraph = await container.retrieval_engine.get_subgraph(node_id, depth, log=log)
    except Exception as exc:
        log.error("knowledge_subgraph_failed", node_id=node_id, error=str(exc))
        raise ApiError(
            status_code=500,
            code="KNOWLEDGE_SUBGRAPH_FAILED",
            message="Knowledge subgraph lookup failed",
            details=str(exc),
        ) from exc
    return SubgraphResponse.from_subgraph(subgraph)
