"""FastAPI backend for session block editing."""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from session_blocks.core.config import settings
from session_blocks.core.logging import configure_logging
from session_blocks.db.database import BlockStore, get_store
from session_blocks.errors import BlockNotFound, NotFound, PersistenceFailure, PreconditionViolation, StaleSessionError
from session_blocks.models.schemas import (
    Assignment,
    AssignBlockRequest,
    BlockCreate,
    BlockOutcomesResponse,
    DurationRequest,
    EditBlockRequest,
    EditResult,
    GroupView,
    OutcomesRequest,
    PickerBlocks,
    ReorderRequest,
    SessionGroupsResponse,
)
from session_blocks.services.catalog import categorize_for_picker
from session_blocks.services.editor import SessionEditor
from session_blocks.services.outcomes import primary_outcomes, secondary_outcomes

configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title="Session Blocks API", version="1.0.0")

# CORS for the planning frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PreconditionViolation)
async def precondition_handler(request: Request, exc: PreconditionViolation):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StaleSessionError)
async def stale_session_handler(request: Request, exc: StaleSessionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PersistenceFailure)
async def persistence_handler(request: Request, exc: PersistenceFailure):
    logger.warning("Request %s %s failed to persist: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def _groups_response(editor: SessionEditor) -> SessionGroupsResponse:
    return SessionGroupsResponse(
        session_id=editor.session_id,
        groups=[
            GroupView(
                position=group.position,
                practices=group.practices,
                effective_duration=group.effective_duration,
            )
            for group in editor.groups
        ],
        total_minutes=editor.total_minutes,
        version=editor.version,
    )


@app.get("/")
def root():
    return {"message": "Session Blocks API", "version": "1.0.0"}


@app.get("/health")
def health():
    return {
        "status": "healthy",
        "supabase_configured": settings.supabase_configured,
    }


@app.get("/api/sessions/{session_id}/groups", response_model=SessionGroupsResponse)
def get_groups(session_id: str, store: BlockStore = Depends(get_store)):
    """Session blocks grouped by position."""
    return _groups_response(SessionEditor.open(store, session_id))


@app.post("/api/sessions/{session_id}/blocks", response_model=Assignment, status_code=201)
def assign_block(session_id: str, request: AssignBlockRequest, store: BlockStore = Depends(get_store)):
    """Append an existing block to the end of the session."""
    return SessionEditor.open(store, session_id).assign(request.block_id)


@app.post("/api/sessions/{session_id}/blocks/new", response_model=Assignment, status_code=201)
def create_and_assign_block(session_id: str, block: BlockCreate, store: BlockStore = Depends(get_store)):
    """Create a block and append it to the session."""
    return SessionEditor.open(store, session_id).create_and_assign(block)


@app.post(
    "/api/sessions/{session_id}/groups/{position}/simultaneous",
    response_model=Assignment,
    status_code=201,
)
def add_simultaneous(
    session_id: str,
    position: int,
    request: AssignBlockRequest,
    store: BlockStore = Depends(get_store),
):
    """Run a block alongside the practice at `position`."""
    return SessionEditor.open(store, session_id).add_simultaneous(request.block_id, position)


@app.delete("/api/sessions/{session_id}/assignments/{assignment_id}", response_model=SessionGroupsResponse)
def remove_assignment(session_id: str, assignment_id: str, store: BlockStore = Depends(get_store)):
    editor = SessionEditor.open(store, session_id)
    editor.remove(assignment_id)
    return _groups_response(editor)


@app.post("/api/sessions/{session_id}/reorder", response_model=SessionGroupsResponse)
def reorder_groups(session_id: str, request: ReorderRequest, store: BlockStore = Depends(get_store)):
    editor = SessionEditor.open(store, session_id)
    editor.reorder(request.from_index, request.to_index)
    return _groups_response(editor)


@app.put("/api/sessions/{session_id}/assignments/{assignment_id}/duration", response_model=SessionGroupsResponse)
def set_duration(
    session_id: str,
    assignment_id: str,
    request: DurationRequest,
    store: BlockStore = Depends(get_store),
):
    editor = SessionEditor.open(store, session_id)
    editor.edit_duration(assignment_id, request.duration)
    return _groups_response(editor)


@app.patch("/api/sessions/{session_id}/assignments/{assignment_id}/block", response_model=EditResult)
def edit_block(
    session_id: str,
    assignment_id: str,
    request: EditBlockRequest,
    store: BlockStore = Depends(get_store),
):
    """Edit the block behind an assignment (copy-on-write for blocks the coach doesn't own)."""
    return SessionEditor.open(store, session_id).edit_block(assignment_id, request.patch, request.coach_id)


@app.put("/api/sessions/{session_id}/assignments/{assignment_id}/outcomes", response_model=EditResult)
def tag_outcomes(
    session_id: str,
    assignment_id: str,
    request: OutcomesRequest,
    store: BlockStore = Depends(get_store),
):
    """Replace the outcomes of the block behind an assignment."""
    return SessionEditor.open(store, session_id).tag_outcomes(
        assignment_id, request.first_order, request.second_order, request.coach_id
    )


@app.get("/api/blocks/{block_id}/outcomes", response_model=BlockOutcomesResponse)
def block_outcomes(block_id: str, store: BlockStore = Depends(get_store)):
    if store.get_block(block_id) is None:
        raise BlockNotFound(block_id)
    outcomes = store.get_block_outcomes(block_id)
    return BlockOutcomesResponse(
        block_id=block_id,
        first_order=primary_outcomes(outcomes),
        second_order=secondary_outcomes(outcomes),
    )


@app.get("/api/blocks/picker", response_model=PickerBlocks)
def block_picker(coach_id: str, club_id: Optional[str] = None, store: BlockStore = Depends(get_store)):
    return categorize_for_picker(store.list_blocks_for_picker(coach_id, club_id), coach_id, club_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
