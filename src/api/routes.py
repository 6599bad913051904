"""FastAPI routes exposing the call lifecycle."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_controller
from api.schemas import (
    AnswerCallResponse,
    CallActionRequest,
    CallStateResponse,
    CallStatusResponse,
    HealthResponse,
    InitiateCallRequest,
    InitiateCallResponse,
    ParticipantView,
    PendingCallsResponse,
    SessionView,
    SignalPayloadRequest,
    SuccessResponse,
    ToggleAudioResponse,
    ToggleMediaRequest,
    ToggleVideoResponse,
)
from calls.controller import CallLifecycleController
from calls.state_machine import MediaKind

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()


@router.post(
    "/calls/initiate",
    response_model=InitiateCallResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_call(
    payload: InitiateCallRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> InitiateCallResponse:
    call = await controller.initiate(
        payload.room_id, payload.call_kind, payload.caller_id, payload.credential
    )
    return InitiateCallResponse(
        call_id=call.call_id,
        room_id=call.room_id,
        call_kind=call.call_kind,
        status=call.status,
        ice_servers=controller.ice_servers,
    )


@router.get("/calls/active", response_model=PendingCallsResponse)
async def pending_calls(
    user_id: str | None = Query(default=None, alias="userId"),
    controller: CallLifecycleController = Depends(get_controller),
) -> PendingCallsResponse:
    calls = await controller.list_pending_for_user(user_id)
    return PendingCallsResponse(
        calls=[SessionView.model_validate(call) for call in calls],
        ice_servers=controller.ice_servers,
    )


@router.post("/calls/{call_id}/answer", response_model=AnswerCallResponse)
async def answer_call(
    call_id: str,
    payload: CallActionRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> AnswerCallResponse:
    call = await controller.answer(call_id, payload.user_id, payload.credential)
    return AnswerCallResponse(
        call_id=call.call_id, status=call.status, ice_servers=controller.ice_servers
    )


@router.post("/calls/{call_id}/reject", response_model=CallStateResponse)
async def reject_call(
    call_id: str,
    payload: CallActionRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> CallStateResponse:
    call = await controller.reject(call_id, payload.user_id, payload.credential)
    return CallStateResponse(call_id=call.call_id, status=call.status)


@router.post("/calls/{call_id}/end", response_model=CallStateResponse)
async def end_call(
    call_id: str,
    payload: CallActionRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> CallStateResponse:
    call = await controller.end(call_id, payload.user_id, payload.credential)
    return CallStateResponse(call_id=call.call_id, status=call.status)


@router.post("/calls/{call_id}/toggle-audio", response_model=ToggleAudioResponse)
async def toggle_audio(
    call_id: str,
    payload: ToggleMediaRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> ToggleAudioResponse:
    enabled = await controller.toggle_media(
        call_id, payload.user_id, MediaKind.AUDIO, payload.enabled
    )
    return ToggleAudioResponse(audio_enabled=enabled)


@router.post("/calls/{call_id}/toggle-video", response_model=ToggleVideoResponse)
async def toggle_video(
    call_id: str,
    payload: ToggleMediaRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> ToggleVideoResponse:
    enabled = await controller.toggle_media(
        call_id, payload.user_id, MediaKind.VIDEO, payload.enabled
    )
    return ToggleVideoResponse(video_enabled=enabled)


@router.post("/calls/{call_id}/offer", response_model=SuccessResponse)
async def post_offer(
    call_id: str,
    payload: SignalPayloadRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> SuccessResponse:
    await controller.record_signal(call_id, payload.user_id, "offer", payload.offer)
    return SuccessResponse()


@router.post("/calls/{call_id}/answer-sdp", response_model=SuccessResponse)
async def post_answer_sdp(
    call_id: str,
    payload: SignalPayloadRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> SuccessResponse:
    await controller.record_signal(call_id, payload.user_id, "answer", payload.answer)
    return SuccessResponse()


@router.post("/calls/{call_id}/ice-candidate", response_model=SuccessResponse)
async def post_ice_candidate(
    call_id: str,
    payload: SignalPayloadRequest,
    controller: CallLifecycleController = Depends(get_controller),
) -> SuccessResponse:
    await controller.record_signal(call_id, payload.user_id, "ice_candidate", payload.candidate)
    return SuccessResponse()


@router.get("/calls/{call_id}/status", response_model=CallStatusResponse)
async def call_status(
    call_id: str,
    controller: CallLifecycleController = Depends(get_controller),
) -> CallStatusResponse:
    call = await controller.get_status(call_id)
    return CallStatusResponse(
        session=SessionView.model_validate(call),
        participants=[ParticipantView.model_validate(p) for p in call.participants],
    )
