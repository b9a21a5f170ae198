# whatsflow/schemas/flow.py
"""Pydantic schemas for chatbot flow API"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime


class FlowNodeSchema(BaseModel):
    """Node as saved by the flow editor (position and styling kept as extras)"""
    id: str = Field(..., min_length=1)
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "allow"


class FlowEdgeSchema(BaseModel):
    """Directed edge; no edge data is interpreted"""
    id: Optional[str] = None
    source: str
    target: str

    class Config:
        extra = "allow"


class FlowGraphSchema(BaseModel):
    nodes: List[FlowNodeSchema] = Field(default_factory=list)
    edges: List[FlowEdgeSchema] = Field(default_factory=list)


class FlowCreate(BaseModel):
    """Schema for creating a new flow"""
    name: str = Field(..., min_length=1, max_length=255, description="Flow name")
    description: Optional[str] = Field(None, description="Flow description")
    flow_data: FlowGraphSchema = Field(
        default_factory=lambda: FlowGraphSchema(
            nodes=[FlowNodeSchema(id="start-node", type="input", data={"label": "Start"})]
        ),
        description="Graph of nodes and edges"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Order confirmation",
                "flow_data": {
                    "nodes": [
                        {"id": "start-node", "type": "input", "data": {"label": "Start"}},
                        {"id": "ask", "type": "buttonMessageNode", "data": {
                            "message": "Confirm your order?",
                            "buttons": [{"text": "Yes", "payload": "yes"}, {"text": "No", "payload": "no"}]
                        }},
                        {"id": "wait", "type": "incomingMessageNode", "data": {"expectedMessage": "yes"}},
                        {"id": "done", "type": "messageNode", "data": {"message": "Great, proceeding..."}}
                    ],
                    "edges": [
                        {"source": "start-node", "target": "ask"},
                        {"source": "ask", "target": "wait"},
                        {"source": "wait", "target": "done"}
                    ]
                }
            }
        }


class FlowUpdate(BaseModel):
    """Schema for updating an existing flow"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    flow_data: Optional[FlowGraphSchema] = None


class FlowResponse(BaseModel):
    """Schema for flow response"""
    id: int
    user_id: str
    name: str
    description: Optional[str]
    flow_data: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FlowListResponse(BaseModel):
    """Schema for paginated flow list response"""
    total: int
    flows: List[FlowResponse]
    page: int
    page_size: int


class FlowValidationResponse(BaseModel):
    """Schema for flow validation response"""
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
