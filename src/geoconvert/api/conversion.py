"""
Conversion API endpoints: formats, CRS resolution, preview and convert.
"""

import json
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import Response
from pydantic import BaseModel, Field

from geoconvert.core.config import settings
from geoconvert.core.errors import GeoConvertException, ValidationError
from geoconvert.core.session import ConversionSession
from geoconvert.models.dataset import UploadedFile
from geoconvert.models.errors import ErrorResponse
from geoconvert.models.options import ConversionOptions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversion"])

ZIP_MEDIA_TYPE = "application/zip"


class CrsResolveRequest(BaseModel):
    """Body of a CRS resolution request."""

    value: str = Field(..., description="CRS input, e.g. 'EPSG:2154'", max_length=10000)
    scope: Literal["source", "target"] = "source"


class CrsResolveResponse(BaseModel):
    """Outcome of a CRS resolution request."""

    input: str
    scope: str
    definition: str
    resolved: bool


class DatasetPreview(BaseModel):
    """Preview of one dataset, or the reason it could not be previewed."""

    name: str
    format_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class PreviewResponse(BaseModel):
    datasets: List[DatasetPreview]


def get_session(request: Request) -> ConversionSession:
    return request.app.state.session


async def read_uploads(files: List[UploadFile]) -> List[UploadedFile]:
    """
    Read multipart uploads into ``UploadedFile`` objects.

    Raises:
        ValidationError: If no file was uploaded or a file has no name
        HTTPException: 413 if a file exceeds the upload size limit
    """
    if not files:
        raise ValidationError("No files were uploaded", field="files")

    uploaded = []
    for upload in files:
        if not upload.filename:
            raise ValidationError("Filename is required", field="files")

        content = await upload.read()
        if len(content) > settings.max_upload_size_bytes:
            logger.warning(f"Upload rejected: {upload.filename} is {len(content)} bytes")
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=ErrorResponse(
                    error_code="FILE_TOO_LARGE",
                    message=f"{upload.filename} exceeds {settings.max_upload_size_mb}MB",
                    details={
                        "file_size": len(content),
                        "max_size": settings.max_upload_size_bytes,
                    },
                ).model_dump(mode="json"),
            )
        uploaded.append(UploadedFile.from_bytes(upload.filename, content))

    return uploaded


def parse_options(raw: str) -> ConversionOptions:
    """
    Parse the JSON options form field.

    Raises:
        ValidationError: If the field is not a JSON object
        pydantic.ValidationError: If an option is invalid
    """
    try:
        document = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise ValidationError(f"Options are not valid JSON: {e}", field="options") from e
    if not isinstance(document, dict):
        raise ValidationError("Options must be a JSON object", field="options")
    return ConversionOptions.model_validate(document)


@router.get("/formats", summary="List supported formats")
async def list_formats(request: Request) -> Dict[str, Any]:
    """
    List every supported format with its read/write capabilities.
    """
    session = get_session(request)
    return {
        "formats": [descriptor.to_dict() for descriptor in session.registry],
        "readable": [descriptor.id for descriptor in session.registry.readable()],
        "writable": [descriptor.id for descriptor in session.registry.writable()],
    }


@router.post(
    "/crs/resolve",
    response_model=CrsResolveResponse,
    summary="Resolve an EPSG code to a PROJ string",
)
async def resolve_crs(request: Request, body: CrsResolveRequest) -> CrsResolveResponse:
    """
    Resolve ``EPSG:<code>`` against the CRS registries.

    Any other input is returned unchanged with ``resolved`` false, as is
    an EPSG code that no registry could resolve. Requests from different
    clients share the definition cache but never skip one another.
    """
    session = get_session(request)
    definition = await session.lookup_crs(body.value)
    return CrsResolveResponse(
        input=body.value,
        scope=body.scope,
        definition=definition,
        resolved=definition != body.value,
    )


@router.post(
    "/preview",
    response_model=PreviewResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No files or invalid request"},
        413: {"model": ErrorResponse, "description": "File too large"},
    },
    summary="Preview uploaded datasets",
)
async def preview_datasets(
    request: Request,
    files: Annotated[List[UploadFile], File(description="Files to preview")],
    source_crs: Annotated[str, Form()] = "",
) -> PreviewResponse:
    """
    Group the uploaded files and describe each dataset.

    A dataset that cannot be described is reported with its error; the
    other datasets are still previewed.
    """
    session = get_session(request)
    uploaded = await read_uploads(files)
    grouping = session.grouper.group(uploaded)

    previews = []
    for dataset in grouping.datasets:
        try:
            metadata = await session.preview(dataset, source_crs)
        except GeoConvertException as e:
            previews.append(
                DatasetPreview(name=dataset.name, format_id=dataset.format_id, error=e.message)
            )
            continue
        previews.append(
            DatasetPreview(
                name=dataset.name,
                format_id=dataset.format_id,
                metadata=metadata.to_dict(),
            )
        )

    return PreviewResponse(datasets=previews)


@router.post(
    "/convert",
    response_class=Response,
    responses={
        200: {"content": {ZIP_MEDIA_TYPE: {}}, "description": "Artifacts and run report"},
        400: {"model": ErrorResponse, "description": "Invalid files or output format"},
        413: {"model": ErrorResponse, "description": "File too large"},
        422: {"model": ErrorResponse, "description": "Invalid options"},
    },
    summary="Convert uploaded datasets",
)
async def convert_datasets(
    request: Request,
    files: Annotated[List[UploadFile], File(description="Files to convert")],
    output_format: Annotated[str, Form(description="Output format id")],
    options: Annotated[str, Form(description="Conversion options as JSON")] = "{}",
) -> Response:
    """
    Convert every dataset of the upload and return a ZIP archive.

    The archive holds one artifact per converted dataset plus
    ``conversion-report.txt``. Failed datasets appear only in the report;
    the response headers carry the succeeded and failed counts.
    """
    session = get_session(request)
    conversion_options = parse_options(options)
    uploaded = await read_uploads(files)
    grouping = session.grouper.group(uploaded)

    report = await session.convert(output_format, conversion_options, datasets=grouping.datasets)
    archive = session.runner.packager.package_results(report.artifacts, report)

    return Response(
        content=archive,
        media_type=ZIP_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="geoconvert-{output_format}.zip"',
            "X-Datasets-Succeeded": str(len(report.succeeded)),
            "X-Datasets-Failed": str(len(report.failed)),
        },
    )
