from typing import List

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from spotmate.core.db import get_db
from spotmate.schemas.connections import (
    ConnectResponse,
    IncomingRequestOut,
    RequestAction,
    SendRequest,
)
from .service import (
    send_connection_request,
    accept_connection_request,
    reject_connection_request,
    incoming_requests,
)

router = APIRouter(prefix="/v1/connect", tags=["connections"])


@router.post("/request", response_model=ConnectResponse)
def connect_request(
    payload: SendRequest,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return send_connection_request(db, x_user_id, payload.target_user_id)


@router.post("/accept", response_model=ConnectResponse)
def connect_accept(
    payload: RequestAction,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return accept_connection_request(db, payload.request_id, x_user_id)


@router.post("/reject", response_model=ConnectResponse)
def connect_reject(
    payload: RequestAction,
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return reject_connection_request(db, payload.request_id, x_user_id)


@router.get("/incoming", response_model=List[IncomingRequestOut])
def connect_incoming(
    x_user_id: str = Header(...),
    db: Session = Depends(get_db),
):
    return incoming_requests(db, x_user_id)
