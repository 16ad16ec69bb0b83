"""Table endpoints: queue, invitations, direct admission and win resolution.

Every mutating endpoint accepts an optional ``expectedVersion``; a stale
version, or a concurrent write that lands first, returns 409 and the client
reloads the table.
"""

from fastapi import APIRouter

from cuehall.api.deps import AdminIdentity, Controller, CurrentIdentity
from cuehall.schemas import (
    ClearQueueResponse,
    ConfirmWinRequest,
    ErrorResponse,
    GameSessionResponse,
    QueueJoinResponse,
    RemovePlayerRequest,
    ResolveDisputeRequest,
    SessionActionRequest,
    TableResponse,
    VersionedRequest,
)

router = APIRouter(prefix="/tables", tags=["Tables"])

CONFLICT_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Not authenticated"},
    404: {"model": ErrorResponse, "description": "Table not found"},
    409: {"model": ErrorResponse, "description": "Stale version or invalid table state"},
}


def _version(body: VersionedRequest | None) -> int | None:
    return body.expected_version if body is not None else None


@router.get("/{table_id}", response_model=TableResponse)
async def get_table(table_id: str, _identity: CurrentIdentity, controller: Controller):
    """Current table snapshot, including queue and state version."""
    return await controller.get_table_snapshot(table_id)


# =============================================================================
# Queue & invitations
# =============================================================================


@router.post("/{table_id}/queue", response_model=QueueJoinResponse, responses=CONFLICT_RESPONSES)
async def join_queue(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    """Join the FIFO wait queue; the head is invited as soon as a slot opens."""
    snapshot = await controller.join_queue(table_id, identity.user_id, _version(body))
    queue = snapshot["queue"]
    return QueueJoinResponse(
        position=queue.index(identity.user_id) + 1 if identity.user_id in queue else None,
        table=TableResponse.model_validate(snapshot),
    )


@router.post("/{table_id}/queue/leave", response_model=TableResponse, responses=CONFLICT_RESPONSES)
async def leave_queue(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    return await controller.leave_queue(table_id, identity.user_id, _version(body))


@router.post(
    "/{table_id}/invitation/accept",
    response_model=GameSessionResponse,
    responses={**CONFLICT_RESPONSES, 403: {"model": ErrorResponse, "description": "Not invited"}},
)
async def accept_invitation(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    """Accept an invitation; creates (or joins) the pending session awaiting payment."""
    return await controller.accept_invitation(table_id, identity.user_id, _version(body))


@router.post("/{table_id}/invitation/decline", response_model=TableResponse, responses=CONFLICT_RESPONSES)
async def decline_invitation(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    return await controller.decline_invitation(table_id, identity.user_id, _version(body))


@router.post("/{table_id}/leave", response_model=TableResponse, responses=CONFLICT_RESPONSES)
async def leave_table(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    """Give up a seat while no game is running."""
    return await controller.leave_table(table_id, identity.user_id, _version(body))


# =============================================================================
# Direct admission
# =============================================================================


@router.post(
    "/{table_id}/direct-join",
    response_model=GameSessionResponse,
    responses={**CONFLICT_RESPONSES, 400: {"model": ErrorResponse, "description": "Insufficient tokens"}},
)
async def direct_join(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    """Pay from the token balance and start playing immediately."""
    return await controller.direct_join(table_id, identity.user_id, _version(body))


@router.post(
    "/{table_id}/drop-in",
    response_model=GameSessionResponse,
    responses={**CONFLICT_RESPONSES, 400: {"model": ErrorResponse, "description": "Insufficient tokens"}},
)
async def drop_in(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    """Solo play on an empty table."""
    return await controller.drop_in(table_id, identity.user_id, _version(body))


# =============================================================================
# Win resolution
# =============================================================================


@router.post("/{table_id}/claim-win", response_model=GameSessionResponse, responses=CONFLICT_RESPONSES)
async def claim_win(
    table_id: str,
    identity: CurrentIdentity,
    controller: Controller,
    body: VersionedRequest | None = None,
):
    return await controller.claim_win(table_id, identity.user_id, _version(body))


@router.post("/{table_id}/confirm-win", response_model=GameSessionResponse, responses=CONFLICT_RESPONSES)
async def confirm_win(
    table_id: str,
    body: ConfirmWinRequest,
    identity: CurrentIdentity,
    controller: Controller,
):
    """The opponent confirms the claimed winner; the winner is paid and stays seated."""
    return await controller.confirm_win(
        table_id,
        body.session_id,
        body.winner_id,
        identity.user_id,
        body.expected_version,
    )


@router.post("/{table_id}/dispute-win", response_model=GameSessionResponse, responses=CONFLICT_RESPONSES)
async def dispute_win(
    table_id: str,
    body: SessionActionRequest,
    identity: CurrentIdentity,
    controller: Controller,
):
    return await controller.dispute_win(
        table_id, body.session_id, identity.user_id, body.expected_version
    )


# =============================================================================
# Admin
# =============================================================================


@router.post("/{table_id}/finish", response_model=GameSessionResponse, responses=CONFLICT_RESPONSES)
async def finish_solo_session(
    table_id: str,
    body: SessionActionRequest,
    _admin: AdminIdentity,
    controller: Controller,
):
    """Device / staff signal that a solo game is over."""
    return await controller.finish_solo_session(table_id, body.session_id)


@router.post("/{table_id}/admin/remove-player", response_model=TableResponse, responses=CONFLICT_RESPONSES)
async def admin_remove_player(
    table_id: str,
    body: RemovePlayerRequest,
    _admin: AdminIdentity,
    controller: Controller,
):
    return await controller.admin_remove_player(table_id, body.player_id)


@router.post("/{table_id}/admin/clear-queue", response_model=ClearQueueResponse, responses=CONFLICT_RESPONSES)
async def admin_clear_queue(table_id: str, _admin: AdminIdentity, controller: Controller):
    dropped = await controller.admin_clear_queue(table_id)
    return ClearQueueResponse(dropped=dropped)


@router.post("/{table_id}/admin/resolve-dispute", response_model=GameSessionResponse, responses=CONFLICT_RESPONSES)
async def admin_resolve_dispute(
    table_id: str,
    body: ResolveDisputeRequest,
    _admin: AdminIdentity,
    controller: Controller,
):
    """Award the disputed game to a player, or void it."""
    return await controller.admin_resolve_dispute(table_id, body.resolution, body.winner_id)


@router.post("/{table_id}/admin/out-of-order", response_model=TableResponse, responses=CONFLICT_RESPONSES)
async def admin_set_out_of_order(table_id: str, _admin: AdminIdentity, controller: Controller):
    return await controller.admin_set_out_of_order(table_id)


@router.post("/{table_id}/admin/restore", response_model=TableResponse, responses=CONFLICT_RESPONSES)
async def admin_restore_table(table_id: str, _admin: AdminIdentity, controller: Controller):
    return await controller.admin_restore_table(table_id)
