# src/api/routes.py — v1
"""Report endpoints: admit, read, read one agent payload, cancel.

The caller identity comes from the ``X-Owner-Id`` header set by the
platform's auth layer. No handler performs model I/O: admission returns
as soon as the report is queued.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request, Response

from galley.api.models import (
    CancelResponse,
    CreateReportRequest,
    CreateReportResponse,
    PayloadResponse,
    ReportResponse,
)
from galley.core.errors import ForbiddenError, GalleyError, NotFoundError
from galley.core.models import ReportAggregate
from galley.pipeline.context import ServiceContext
from galley.pipeline.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reports"])


def get_services(request: Request) -> ServiceContext:
    return request.app.state.services


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_owner(x_owner_id: Annotated[str | None, Header()] = None) -> str:
    if not x_owner_id:
        raise GalleyError("Missing X-Owner-Id header", kind="unauthorized")
    return x_owner_id


def _owned_report(services: ServiceContext, report_id: str, owner_id: str) -> ReportAggregate:
    report = services.reports.get(report_id)
    if report.owner_id != owner_id:
        raise ForbiddenError(f"Report {report_id} belongs to another owner")
    return report


@router.post(
    "/manuscripts/{manuscript_id}/reports",
    response_model=CreateReportResponse,
    status_code=201,
)
async def create_report(
    manuscript_id: str,
    body: CreateReportRequest,
    response: Response,
    owner_id: Annotated[str, Depends(get_owner)],
    dispatcher: Annotated[JobDispatcher, Depends(get_dispatcher)],
) -> CreateReportResponse:
    """Admit a report; an active report for the same pipeline is returned as is."""
    admission = await dispatcher.admit(
        owner_id, manuscript_id, body.pipeline_spec_id, exclusive=body.exclusive
    )
    if not admission.created:
        response.status_code = 200
    return CreateReportResponse(report_id=admission.report_id, status=admission.status)


@router.get("/reports/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    owner_id: Annotated[str, Depends(get_owner)],
    services: Annotated[ServiceContext, Depends(get_services)],
) -> ReportResponse:
    return ReportResponse.from_report(_owned_report(services, report_id, owner_id))


@router.get("/reports/{report_id}/agents/{agent_kind}", response_model=PayloadResponse)
async def get_agent_payload(
    report_id: str,
    agent_kind: str,
    owner_id: Annotated[str, Depends(get_owner)],
    services: Annotated[ServiceContext, Depends(get_services)],
) -> PayloadResponse:
    """Full payload of one agent, rehydrated from blob storage when needed."""
    _owned_report(services, report_id, owner_id)
    result = await services.reports.get_agent_result(report_id, agent_kind)
    if result is None or result.status == "skipped":
        raise NotFoundError(
            f"No output for {agent_kind} in report {report_id}", kind="unknown_agent_result"
        )
    return PayloadResponse(agent_kind=agent_kind, status=result.status, payload=result.payload)


@router.post(
    "/reports/{report_id}/cancel",
    response_model=CancelResponse,
    status_code=202,
)
async def cancel_report(
    report_id: str,
    owner_id: Annotated[str, Depends(get_owner)],
    dispatcher: Annotated[JobDispatcher, Depends(get_dispatcher)],
) -> CancelResponse:
    """Request cancellation; a terminal report is returned unchanged."""
    status = await dispatcher.cancel(report_id, owner_id)
    return CancelResponse(status=status)
