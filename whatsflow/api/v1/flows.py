# whatsflow/api/v1/flows.py
"""Chatbot flow API endpoints"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional

from whatsflow.db.session import get_db
from whatsflow.api.deps import get_current_user_id
from whatsflow.core.exceptions import FlowDataError
from whatsflow.models.flow import ChatbotFlow
from whatsflow.models.rule import ChatbotRule
from whatsflow.schemas.flow import (
    FlowCreate,
    FlowUpdate,
    FlowResponse,
    FlowListResponse,
    FlowValidationResponse,
)
from whatsflow.services.flow_interpreter import FlowGraph

router = APIRouter()


def _get_flow_or_404(db: Session, user_id: str, flow_id: int) -> ChatbotFlow:
    flow = db.query(ChatbotFlow).filter(
        ChatbotFlow.user_id == user_id,
        ChatbotFlow.id == flow_id
    ).first()

    if not flow:
        raise HTTPException(status_code=404, detail="Flow not found")
    return flow


@router.post("/", response_model=FlowResponse, status_code=201)
def create_flow(
    data: FlowCreate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Create a new chatbot flow

    - **name**: Flow name (required)
    - **description**: Flow description (optional)
    - **flow_data**: Graph of nodes and edges (defaults to a lone start-node)
    """
    flow = ChatbotFlow(
        user_id=user_id,
        name=data.name,
        description=data.description,
        flow_data=data.flow_data.model_dump(exclude_none=True),
    )

    db.add(flow)
    db.commit()
    db.refresh(flow)

    return flow


@router.get("/", response_model=FlowListResponse)
def list_flows(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search by name or description"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """List flows with pagination"""
    query = db.query(ChatbotFlow).filter(ChatbotFlow.user_id == user_id)

    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            (ChatbotFlow.name.ilike(search_pattern)) |
            (ChatbotFlow.description.ilike(search_pattern))
        )

    total = query.count()

    offset = (page - 1) * page_size
    flows = query.order_by(ChatbotFlow.created_at.desc(), ChatbotFlow.id.desc()).offset(offset).limit(page_size).all()

    return {
        "total": total,
        "flows": flows,
        "page": page,
        "page_size": page_size
    }


@router.get("/{flow_id}", response_model=FlowResponse)
def get_flow(
    flow_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Get a specific flow"""
    return _get_flow_or_404(db, user_id, flow_id)


@router.put("/{flow_id}", response_model=FlowResponse)
def update_flow(
    flow_id: int,
    data: FlowUpdate,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Update an existing flow

    - Only provided fields will be updated
    - Conversations positioned in this flow keep their node id; nodes that
      no longer exist make them leave the flow on their next message
    """
    flow = _get_flow_or_404(db, user_id, flow_id)

    update_data = data.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in update_data.items():
        setattr(flow, field, value)

    db.commit()
    db.refresh(flow)

    return flow


@router.delete("/{flow_id}")
def delete_flow(
    flow_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """Delete a flow that no rule references"""
    flow = _get_flow_or_404(db, user_id, flow_id)

    in_use = db.query(ChatbotRule).filter(ChatbotRule.flow_id == flow.id).count()
    if in_use:
        raise HTTPException(
            status_code=409,
            detail=f"Flow is used by {in_use} chatbot rule(s); delete or change them first"
        )

    db.delete(flow)
    db.commit()
    return {"message": "Flow deleted", "flow_id": flow_id}


@router.post("/{flow_id}/validate", response_model=FlowValidationResponse)
def validate_flow(
    flow_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id)
):
    """
    Validate a flow graph

    Errors make the flow unusable at runtime (missing start-node, dangling
    edges, incoming nodes without an expected message). Warnings flag
    constructs that run but probably not as drawn, such as several edges
    leaving one node.
    """
    flow = _get_flow_or_404(db, user_id, flow_id)

    try:
        graph = FlowGraph.from_flow_data(flow.flow_data, flow_id=flow.id)
    except FlowDataError as e:
        return FlowValidationResponse(is_valid=False, errors=[e.message])

    errors, warnings = graph.validate()
    return FlowValidationResponse(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings
    )
