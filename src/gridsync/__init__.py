"""gridsync - Spreadsheet documents behind expiring signed URLs.

Resolves working download URLs for documents in object storage, parses
workbooks and delimited text into grids, and turns an edited grid back
into the minimal list of cell edits for the backend.
"""

__version__ = "0.1.0"

from gridsync.client import DocumentClient, OpenedDocument, SaveResult
from gridsync.diff import apply_edits, diff
from gridsync.exceptions import (
    ApplyEditsFailedError,
    AuthenticationRequiredError,
    GridsyncError,
    InvalidAddressError,
    MockDataUnavailableError,
    NetworkError,
    ParseError,
    RefreshExhaustedError,
    ResolverError,
)
from gridsync.ingestion import parse_delimited, parse_document, parse_workbook
from gridsync.model import (
    Cell,
    CellKind,
    GridCellEdit,
    SheetCellEdit,
    SignedURL,
    SpreadsheetDocument,
)
from gridsync.resolver import SignedUrlResolver
from gridsync.transport import HttpTransport, Transport
from gridsync.url_cache import URLCache
from gridsync.utils import decode_cell, decode_column, encode_cell, encode_column

__all__ = [
    "ApplyEditsFailedError",
    "AuthenticationRequiredError",
    "Cell",
    "CellKind",
    "DocumentClient",
    "GridCellEdit",
    "GridsyncError",
    "HttpTransport",
    "InvalidAddressError",
    "MockDataUnavailableError",
    "NetworkError",
    "OpenedDocument",
    "ParseError",
    "RefreshExhaustedError",
    "ResolverError",
    "SaveResult",
    "SheetCellEdit",
    "SignedURL",
    "SignedUrlResolver",
    "SpreadsheetDocument",
    "Transport",
    "URLCache",
    "__version__",
    "apply_edits",
    "decode_cell",
    "decode_column",
    "diff",
    "encode_cell",
    "encode_column",
    "parse_delimited",
    "parse_document",
    "parse_workbook",
]
