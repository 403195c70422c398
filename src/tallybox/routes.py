from uuid import UUID

from fastapi import APIRouter, Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from loguru import logger

from tallybox.config import API_PREFIX
from tallybox.errors import (
    ContestError,
    NotFound,
    ProcessingError,
    StorageError,
    UnexpectedChunk,
)
from tallybox.service import ContestService

ERROR_STATUS = {
    NotFound: 404,
    UnexpectedChunk: 409,
    StorageError: 500,
    ProcessingError: 502,
}


def _status_for(exc: ContestError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


async def _handle_contest_error(request: Request, exc: ContestError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(exc.to_dict(), status_code=status)


async def _handle_new_contest(service: ContestService, config: dict) -> JSONResponse:
    return JSONResponse(await service.create(config))


async def _handle_cast_votes(
    service: ContestService, request: Request, contest_id: UUID, chunk: int
) -> JSONResponse:
    result = await service.upload(str(contest_id), chunk, request.stream())
    return JSONResponse(result)


async def _handle_tabulate(
    service: ContestService, contest_id: UUID, operator_name: str
) -> Response:
    try:
        result = await service.tabulate(str(contest_id), operator_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(content=result.content, media_type="application/json")


async def _handle_clear(service: ContestService, contest_id: UUID) -> Response:
    await service.teardown(str(contest_id))
    return Response(status_code=202)


def register_routes(app: FastAPI, service: ContestService):
    app.add_exception_handler(ContestError, _handle_contest_error)

    router = APIRouter(prefix=API_PREFIX)

    @router.get("/appVersion", response_class=PlainTextResponse)
    async def app_version() -> str:
        return service.version()

    @router.post("/newContest")
    async def new_contest(config: dict = Body(...)) -> JSONResponse:
        return await _handle_new_contest(service, config)

    @router.post("/castVotes")
    async def cast_votes(
        request: Request,
        contest_id: UUID = Query(..., alias="contestId"),
        chunk: int = Query(...),
    ) -> JSONResponse:
        return await _handle_cast_votes(service, request, contest_id, chunk)

    @router.get("/tabulate")
    async def tabulate(
        contest_id: UUID = Query(..., alias="contestId"),
        name: str = Query(...),
    ) -> Response:
        return await _handle_tabulate(service, contest_id, name)

    @router.get("/clear")
    async def clear(contest_id: UUID = Query(..., alias="contestId")) -> Response:
        return await _handle_clear(service, contest_id)

    app.include_router(router)


def create_app(service: ContestService) -> FastAPI:
    app = FastAPI(title="tallybox", version=service.version().split()[-1])
    app.state.service = service
    register_routes(app, service)
    return app
