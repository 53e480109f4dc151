"""FastAPI application exposing melt and checksum over HTTP.

WHY: Save analysers accept uploads from browsers and bots that cannot
run a Python CLI. They need one endpoint that takes a save and returns
its text form, and one that fingerprints it for deduplication.

HOW: POST /melt receives a multipart upload, wraps the spooled upload in
a SaveContainer (which enforces the size ceiling before reading), melts
into a spooled temporary file and streams that back in chunks. Melting
completes before the response starts, so errors still map to status
codes. The resolver factory and size ceiling are FastAPI dependencies,
so tests can override them.

RULES:
- Oversized uploads are 413, unrecognized containers 400, corrupt
  saves and ERROR-policy aborts 422, a missing token table 503
- Error responses use the ErrorResponse schema
- Handlers are sync functions; FastAPI runs them in its threadpool
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import logging
import tempfile
from typing import Annotated, Callable, Iterator, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import StreamingResponse

from pdx_melt import __version__
from pdx_melt.config import CHUNK_SIZE, MAX_INPUT_SIZE, SERVER_HOST, SERVER_PORT
from pdx_melt.container.save import SaveContainer
from pdx_melt.core.checksum import ChecksumReader, ContentChecksum
from pdx_melt.core.flavor import FLAVORS, Game
from pdx_melt.core.melt import FailedResolveStrategy, MeltOptions
from pdx_melt.errors import (
    InputTooLargeError,
    MalformedInputError,
    PdxMeltError,
    TokenTableError,
    UnresolvedTokenError,
    UnsupportedContainerError,
)
from pdx_melt.resolvers import NullResolver, load_resolver
from pdx_melt.server.models import ChecksumResponse, ErrorResponse, GameInfo, HealthResponse

logger = logging.getLogger(__name__)

app = FastAPI(
    title="PDX Melt API",
    description=(
        "Melt binary grand-strategy save files (EU4, CK3, Imperator, "
        "Victoria 3, EU5) into their plain-text form, and compute "
        "content checksums of uploads."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Unrecognized save container"},
    413: {"model": ErrorResponse, "description": "Upload exceeds the size ceiling"},
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_resolver_factory() -> Callable[[str], object]:
    """Return the callable that builds (or fetches) a resolver per game."""
    return load_resolver


def get_max_input_size() -> int:
    return MAX_INPUT_SIZE


def _http_error(exc: PdxMeltError) -> HTTPException:
    if isinstance(exc, InputTooLargeError):
        return HTTPException(status_code=413, detail=str(exc))
    if isinstance(exc, UnsupportedContainerError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (MalformedInputError, UnresolvedTokenError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, TokenTableError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _stream_spool(spool) -> Iterator[bytes]:
    try:
        while True:
            chunk = spool.read(CHUNK_SIZE)
            if not chunk:
                return
            yield chunk
    finally:
        spool.close()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.post(
    "/melt",
    tags=["melt"],
    summary="Melt a save file to plain text",
    description=(
        "Upload a save file. Binary saves are melted with the game's token "
        "table; text saves are returned unchanged. The response body is the "
        "text save. X-Unknown-Tokens counts tokens missing from the table."
    ),
    response_class=StreamingResponse,
    responses={
        **_ERRORS,
        422: {"model": ErrorResponse, "description": "Corrupt save or unresolved token"},
        503: {"model": ErrorResponse, "description": "No token table configured"},
    },
)
def melt_save(
    file: Annotated[UploadFile, File(description="Save file to melt")],
    game: Annotated[
        Optional[Game],
        Form(description="Game the save belongs to. Guessed from extension or magic when omitted."),
    ] = None,
    on_unknown: Annotated[
        FailedResolveStrategy,
        Form(description="Policy for tokens missing from the token table."),
    ] = FailedResolveStrategy.IGNORE,
    verbatim: Annotated[
        bool,
        Form(description="Keep fields normally stripped, such as the ironman flag."),
    ] = False,
    resolver_factory: Callable[[str], object] = Depends(get_resolver_factory),
    max_input_size: int = Depends(get_max_input_size),
) -> StreamingResponse:
    options = MeltOptions(
        on_failed_resolve=on_unknown,
        verbatim=verbatim,
        max_input_size=max_input_size,
    )
    filename = file.filename or "upload"
    spool = tempfile.SpooledTemporaryFile(max_size=8 * CHUNK_SIZE)
    try:
        with SaveContainer.from_stream(
            file.file, game=game.value if game else None, options=options, name=filename,
        ) as container:
            if container.encoding.is_binary:
                flavor = container.flavor
                if flavor is None:
                    raise UnsupportedContainerError(
                        "cannot tell which game {} belongs to; send the game field".format(filename)
                    )
                resolver = resolver_factory(flavor.name)
            else:
                resolver = NullResolver()
            document = container.melt(spool, resolver, options)
    except PdxMeltError as exc:
        spool.close()
        logger.info("Melt of %s failed: %s", filename, exc)
        raise _http_error(exc)
    except BaseException:
        spool.close()
        raise

    spool.seek(0)
    logger.info("Melted %s: %d bytes", filename, document.bytes_written)
    return StreamingResponse(
        _stream_spool(spool),
        media_type="text/plain",
        headers={"X-Unknown-Tokens": str(len(document.unknown_tokens))},
    )


@app.post(
    "/checksum",
    response_model=ChecksumResponse,
    tags=["checksum"],
    summary="Compute the content checksum of a file",
    description="Stream the upload through the content checksum and return its digest.",
    responses={413: _ERRORS[413]},
)
def checksum_file(
    file: Annotated[UploadFile, File(description="File to checksum")],
    max_input_size: int = Depends(get_max_input_size),
) -> ChecksumResponse:
    size = file.size
    if size is not None and size > max_input_size:
        raise _http_error(InputTooLargeError(size, max_input_size))

    reader = ChecksumReader(file.file, ContentChecksum())
    while reader.read(CHUNK_SIZE):
        if reader.checksum.bytes_seen > max_input_size:
            raise _http_error(InputTooLargeError(reader.checksum.bytes_seen, max_input_size))
    return ChecksumResponse(checksum=reader.checksum.finish(), size=reader.checksum.bytes_seen)


@app.get(
    "/games",
    response_model=List[GameInfo],
    tags=["games"],
    summary="List supported games",
)
def list_games() -> List[GameInfo]:
    return [
        GameInfo(
            key=flavor.name,
            title=flavor.title,
            extensions=list(flavor.extensions),
            encoding=flavor.encoding,
        )
        for flavor in FLAVORS.values()
    ]


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
)
def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api(host: str = SERVER_HOST, port: int = SERVER_PORT) -> None:
    """Entry point for the pdx-melt-api console script and ``pdx-melt serve``."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)
