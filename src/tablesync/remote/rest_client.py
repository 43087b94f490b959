"""
REST binding of RemoteTableClient.

Talks to a Synapse-style table service over HTTP with a synchronous
httpx client. Each method issues the requests for one logical remote call;
rate limiting and retries are applied by the caller.

Async job results come back as HTTP 202 while the job is still running.
That status is the "not ready" signal and maps to ``PollResult.not_ready()``.
"""

import hashlib
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import httpx

from ..config import RemoteConfig
from ..exceptions import (
    RemoteJobFailedError,
    RemoteRequestError,
    RemoteServiceError,
    RemoteThrottledError,
    UnexpectedResultError,
)
from .base import RemoteTableClient
from .models import (
    AccessControlList,
    AccessGrant,
    ColumnChange,
    ColumnDef,
    PollResult,
    RowReferenceSet,
    RowSet,
    SchemaChangeResponse,
    StackStatus,
    TableEntity,
    UploadToTableResult,
)


logger = logging.getLogger(__name__)

MODEL_PACKAGE = "org.sagebionetworks.repo.model"
TABLE_PACKAGE = f"{MODEL_PACKAGE}.table"
FILE_PACKAGE = f"{MODEL_PACKAGE}.file"

# Single-part uploads: one part of at most 5 GiB, at least 5 MiB declared
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_SINGLE_PART_SIZE = 5 * 1024 * 1024 * 1024

READ_CHUNK_SIZE = 1024 * 1024


def _read_chunks(path: Path, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
    with path.open("rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                return
            yield chunk


def _file_md5_hex(path: Path) -> str:
    md5 = hashlib.md5()
    for chunk in _read_chunks(path):
        md5.update(chunk)
    return md5.hexdigest()


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header, given either as seconds or as an HTTP date.

    Returns None when the header is missing or unreadable.
    """
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class RestTableClient(RemoteTableClient):
    """Remote table service client over HTTP."""

    def __init__(self, config: RemoteConfig, http_client: Optional[httpx.Client] = None):
        super().__init__()
        self.config = config

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "tablesync/0.1",
        }
        if config.auth_token:
            headers["Authorization"] = f"Bearer {config.auth_token}"

        if http_client is None:
            http_client = httpx.Client(
                base_url=config.base_url,
                headers=headers,
                timeout=config.timeout,
            )
        else:
            http_client.headers.update(headers)
        self._http = http_client

    def close(self) -> None:
        self._http.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(base_url={self.config.base_url})"

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request and map transport and HTTP errors."""
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RemoteServiceError(f"Network error calling {method} {path}: {e}", cause=e)

        self._raise_for_status(response, method, path)
        return response

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        status = response.status_code
        if status < 400:
            return

        body = response.text
        if status == 429:
            raise RemoteThrottledError(
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                response_body=body,
            )
        if status >= 500:
            raise RemoteServiceError(
                f"Remote error calling {method} {path}: HTTP {status}",
                status_code=status,
                response_body=body,
            )
        raise RemoteRequestError(
            f"Request rejected calling {method} {path}: {self._reason(response)}",
            status_code=status,
            response_body=body,
        )

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("reason"):
            return data["reason"]
        return f"HTTP {response.status_code}"

    def _json(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._send(method, path, json=body)
        if not response.content:
            return {}
        return response.json()

    def _poll(self, path: str, token: str) -> Optional[Dict[str, Any]]:
        """GET an async job result. Returns None while the job is running."""
        response = self._send("GET", path)
        if response.status_code == 202:
            status = response.json() if response.content else {}
            if status.get("jobState") == "FAILED":
                raise RemoteJobFailedError(
                    token,
                    error_message=status.get("errorMessage"),
                    response_body=response.text,
                )
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Columns and tables
    # ------------------------------------------------------------------

    def create_columns(self, columns: List[ColumnDef]) -> List[ColumnDef]:
        body = {
            "concreteType": f"{MODEL_PACKAGE}.ListWrapper",
            "list": [c.to_dict() for c in columns],
        }
        data = self._json("POST", "/repo/v1/column/batch", body)
        return [ColumnDef.from_dict(item) for item in data.get("list", [])]

    def create_table(self, name: str, parent_id: str, column_ids: List[str]) -> TableEntity:
        body = {
            "concreteType": f"{TABLE_PACKAGE}.TableEntity",
            "name": name,
            "parentId": parent_id,
            "columnIds": list(column_ids),
        }
        data = self._json("POST", "/repo/v1/entity", body)
        return TableEntity(
            name=data.get("name", name),
            parent_id=data.get("parentId", parent_id),
            column_ids=data.get("columnIds", list(column_ids)),
            remote_id=data["id"],
        )

    def create_acl(self, table_id: str, grants: List[AccessGrant]) -> None:
        acl = AccessControlList(table_id, list(grants))
        self._json("POST", f"/repo/v1/entity/{table_id}/acl", acl.to_dict())

    def get_acl(self, entity_id: str) -> Optional[AccessControlList]:
        try:
            data = self._json("GET", f"/repo/v1/entity/{entity_id}/acl")
        except RemoteRequestError as e:
            if e.status_code == 404:
                return None
            raise
        return AccessControlList.from_dict(data)

    def update_acl(self, acl: AccessControlList) -> None:
        self._json("PUT", f"/repo/v1/entity/{acl.entity_id}/acl", acl.to_dict())

    def get_columns(self, table_id: str) -> List[ColumnDef]:
        data = self._json("GET", f"/repo/v1/entity/{table_id}/column")
        return [ColumnDef.from_dict(item) for item in data.get("results", [])]

    # ------------------------------------------------------------------
    # Schema change transactions
    # ------------------------------------------------------------------

    def start_schema_change_job(
        self,
        table_id: str,
        changes: List[ColumnChange],
        ordered_column_ids: List[str],
    ) -> str:
        # The transaction API takes a list of requests; we always send one
        body = {
            "concreteType": f"{TABLE_PACKAGE}.TableUpdateTransactionRequest",
            "entityId": table_id,
            "changes": [
                {
                    "concreteType": f"{TABLE_PACKAGE}.TableSchemaChangeRequest",
                    "entityId": table_id,
                    "changes": [c.to_dict() for c in changes],
                    "orderedColumnIds": list(ordered_column_ids),
                }
            ],
        }
        data = self._json("POST", f"/repo/v1/entity/{table_id}/table/transaction/async/start", body)
        return data["token"]

    def poll_schema_change_job(
        self, token: str, table_id: str
    ) -> PollResult[List[SchemaChangeResponse]]:
        data = self._poll(f"/repo/v1/entity/{table_id}/table/transaction/async/get/{token}", token)
        if data is None:
            return PollResult.not_ready()

        responses = []
        for item in data.get("results", []):
            concrete_type = item.get("concreteType", "")
            if not concrete_type.endswith("TableSchemaChangeResponse"):
                raise UnexpectedResultError(
                    f"Expected a TableSchemaChangeResponse for table {table_id}, "
                    f"but got {concrete_type or 'untyped response'}"
                )
            responses.append(
                SchemaChangeResponse(
                    table_id=table_id,
                    columns=[ColumnDef.from_dict(c) for c in item.get("schema", [])],
                )
            )
        return PollResult.ready(responses)

    # ------------------------------------------------------------------
    # Bulk upload
    # ------------------------------------------------------------------

    def upload_file(self, path: Union[str, Path]) -> str:
        path = Path(path)
        size = path.stat().st_size
        if size > MAX_SINGLE_PART_SIZE:
            raise RemoteRequestError(f"File {path} is too large to upload in one part ({size} bytes)")

        md5_hex = _file_md5_hex(path)
        status = self._json(
            "POST",
            "/file/v1/file/multipart",
            {
                "concreteType": f"{FILE_PACKAGE}.MultipartUploadRequest",
                "fileName": path.name,
                "contentType": "text/tab-separated-values",
                "contentMD5Hex": md5_hex,
                "fileSizeBytes": size,
                "partSizeBytes": max(size, MIN_PART_SIZE),
            },
        )

        # Same content uploaded before: the service returns the finished handle
        if status.get("state") == "COMPLETED" and status.get("resultFileHandleId"):
            return str(status["resultFileHandleId"])

        upload_id = status["uploadId"]
        urls = self._json(
            "POST",
            f"/file/v1/file/multipart/{upload_id}/presigned/url/batch",
            {
                "concreteType": f"{FILE_PACKAGE}.BatchPresignedUploadUrlRequest",
                "uploadId": upload_id,
                "partNumbers": [1],
            },
        )
        part = urls["partPresignedUrls"][0]
        self._put_part(part["uploadPresignedUrl"], path, size, part.get("signedHeaders") or {})

        self._json("PUT", f"/file/v1/file/multipart/{upload_id}/add/1?partMD5Hex={md5_hex}")
        completed = self._json("PUT", f"/file/v1/file/multipart/{upload_id}/complete")
        if completed.get("state") != "COMPLETED" or not completed.get("resultFileHandleId"):
            raise UnexpectedResultError(f"Multipart upload {upload_id} did not complete: {completed}")

        logger.debug(f"Uploaded {path.name} ({size} bytes) as file handle {completed['resultFileHandleId']}")
        return str(completed["resultFileHandleId"])

    def _put_part(self, url: str, path: Path, size: int, signed_headers: Dict[str, str]) -> None:
        """
        Stream a file to blob storage through a presigned URL.

        Transport errors from the storage side propagate unchanged; the
        upload retry policy decides whether to retry them.
        """
        # An explicit length keeps httpx from switching to chunked encoding
        request = self._http.build_request(
            "PUT",
            url,
            content=_read_chunks(path),
            headers={"Content-Length": str(size)},
            timeout=self.config.upload_timeout,
        )
        # The URL carries its own signature; service headers would invalidate it
        for name in ("Authorization", "Content-Type"):
            request.headers.pop(name, None)
        request.headers.update(signed_headers)

        response = self._http.send(request)
        self._raise_for_status(response, "PUT", "<presigned part url>")

    def start_tsv_import_job(
        self,
        table_id: str,
        file_handle_id: str,
        has_header: bool = True,
        delimiter: str = "\t",
    ) -> str:
        body = {
            "concreteType": f"{TABLE_PACKAGE}.UploadToTableRequest",
            "tableId": table_id,
            "entityId": table_id,
            "uploadFileHandleId": file_handle_id,
            "csvTableDescriptor": {
                "isFirstLineHeader": has_header,
                "separator": delimiter,
            },
        }
        data = self._json("POST", f"/repo/v1/entity/{table_id}/table/upload/csv/async/start", body)
        return data["token"]

    def poll_tsv_import_job(self, token: str, table_id: str) -> PollResult[UploadToTableResult]:
        data = self._poll(f"/repo/v1/entity/{table_id}/table/upload/csv/async/get/{token}", token)
        if data is None:
            return PollResult.not_ready()
        rows = data.get("rowsProcessed")
        return PollResult.ready(
            UploadToTableResult(
                rows_processed=int(rows) if rows is not None else None,
                etag=data.get("etag"),
            )
        )

    # ------------------------------------------------------------------
    # Row append
    # ------------------------------------------------------------------

    def start_append_job(self, table_id: str, row_set: RowSet) -> str:
        body = {
            "concreteType": f"{TABLE_PACKAGE}.AppendableRowSetRequest",
            "entityId": table_id,
            "toAppend": {
                "concreteType": f"{TABLE_PACKAGE}.RowSet",
                "tableId": table_id,
                "headers": [{"id": h} for h in row_set.headers],
                "rows": [{"values": [None if v is None else str(v) for v in row]} for row in row_set.rows],
            },
        }
        data = self._json("POST", f"/repo/v1/entity/{table_id}/table/append/async/start", body)
        return data["token"]

    def poll_append_job(self, token: str, table_id: str) -> PollResult[RowReferenceSet]:
        data = self._poll(f"/repo/v1/entity/{table_id}/table/append/async/get/{token}", token)
        if data is None:
            return PollResult.not_ready()
        ref_set = data.get("rowReferenceSet") or {}
        return PollResult.ready(
            RowReferenceSet(
                table_id=ref_set.get("tableId", table_id),
                row_ids=[int(r["rowId"]) for r in ref_set.get("rows", [])],
                etag=ref_set.get("etag"),
            )
        )

    # ------------------------------------------------------------------
    # Entities and status
    # ------------------------------------------------------------------

    def lookup_child(self, parent_id: str, name: str) -> Optional[str]:
        try:
            data = self._json("POST", "/repo/v1/entity/child", {"parentId": parent_id, "entityName": name})
        except RemoteRequestError as e:
            if e.status_code == 404:
                return None
            raise
        return data.get("id")

    def create_folder(self, parent_id: str, name: str) -> str:
        body = {
            "concreteType": f"{MODEL_PACKAGE}.Folder",
            "name": name,
            "parentId": parent_id,
        }
        return self._json("POST", "/repo/v1/entity", body)["id"]

    def get_stack_status(self) -> StackStatus:
        data = self._json("GET", "/repo/v1/status")
        try:
            return StackStatus(data.get("status"))
        except ValueError:
            raise UnexpectedResultError(f"Unknown stack status: {data.get('status')}")
