"""Entry point for the dataset source server."""

import time
import uuid
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from source.config import SOURCE_DATA_DIR, SOURCE_SERVER_HOST, SOURCE_SERVER_PORT
from source.exceptions import (
    DatasetNotFoundError,
    InvalidDatasetError,
    RangeNotSatisfiableError,
)
from source.routes import router
from source.schemas import ErrorResponse

logger = setup_logging('source')


def create_app(data_dir: Optional[str] = None) -> FastAPI:
    """
    Build the source application serving files from data_dir.
    """
    app = FastAPI(
        title="Island Dataset Source",
        description="Serves identifier datasets to ingestion contexts",
        version="1.0.0"
    )
    app.state.data_dir = data_dir or SOURCE_DATA_DIR

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests and responses.
        """
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
        )

        response = await call_next(request)

        duration = time.time() - start_time

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
        )

        response.headers["X-Request-ID"] = request_id

        return response

    @app.exception_handler(DatasetNotFoundError)
    async def dataset_not_found_handler(request: Request, exc: DatasetNotFoundError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.warning(f"Dataset not found: {exc} [request_id={request_id}]")
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(detail=str(exc), code="DATASET_NOT_FOUND").model_dump()
        )

    @app.exception_handler(InvalidDatasetError)
    async def invalid_dataset_handler(request: Request, exc: InvalidDatasetError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"Invalid dataset: {exc} [request_id={request_id}]")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(detail=str(exc), code="INVALID_DATASET").model_dump()
        )

    @app.exception_handler(RangeNotSatisfiableError)
    async def range_not_satisfiable_handler(request: Request, exc: RangeNotSatisfiableError):
        return JSONResponse(
            status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
            content=ErrorResponse(detail=str(exc), code="RANGE_NOT_SATISFIABLE").model_dump(),
            headers={"Content-Range": f"bytes */{exc.size}"}
        )

    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    """Run the source server with uvicorn."""
    logger.info(f"Serving datasets from {app.state.data_dir} on {SOURCE_SERVER_HOST}:{SOURCE_SERVER_PORT}")
    uvicorn.run(app, host=SOURCE_SERVER_HOST, port=SOURCE_SERVER_PORT, log_level="info")


if __name__ == "__main__":
    main()
