"""Pydantic schemas for the dataset source endpoints."""

from typing import List

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""
    status: str
    datasets: List[str]


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str
