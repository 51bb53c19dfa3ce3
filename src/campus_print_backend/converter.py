"""
Document normalization: turn any supported office format into a PDF.

Conversion is modelled as an ordered list of strategies. Each strategy either
returns a ``NormalizedDocument`` or ``None`` ("try the next one"); the
``FormatNormalizer`` walks the list and raises ``ConversionFailed`` once it is
exhausted. Strategies never raise for ordinary conversion failures.

Every attempt writes into its own fresh directory created with
``tempfile.mkdtemp``. A failed attempt removes its directory before returning;
a successful one hands it to the caller through ``NormalizedDocument.discard``.
"""

from __future__ import annotations

import logging
import mimetypes
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import requests

from .errors import ConversionFailed, UnsupportedDocumentType
from .utils import make_work_dir

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("doc", "docx", "ppt", "pptx", "pdf", "txt", "xls", "xlsx")

MIME_TYPES = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "text/plain": "txt",
}

LOCAL_ENGINE_FLAGS = (
    "--headless",
    "--nodefault",
    "--nolockcheck",
    "--invisible",
    "--norestore",
    "--convert-to",
    "pdf",
)

PDF_SIGNATURE = b"%PDF-"


def detect_file_type(mime_type: str, filename: str = "") -> str:
    """
    Map a declared MIME type (falling back to the file extension) to one of
    ``SUPPORTED_TYPES``.

    Raises:
        UnsupportedDocumentType: If neither identifies a supported format
    """
    file_type = MIME_TYPES.get((mime_type or "").split(";")[0].strip().lower())
    if file_type is None:
        suffix = Path(filename).suffix.lower().lstrip(".")
        file_type = suffix if suffix in SUPPORTED_TYPES else None
    if file_type is None:
        raise UnsupportedDocumentType(mime_type, filename)
    return file_type


def mime_type_for(file_type: str) -> str:
    for mime_type, candidate in MIME_TYPES.items():
        if candidate == file_type:
            return mime_type
    return mimetypes.guess_type(f"file.{file_type}")[0] or "application/octet-stream"


@dataclass
class NormalizedDocument:
    """A PDF ready for page counting, plus the directory it lives in (if any)."""

    pdf_path: Path
    workdir: Optional[Path] = None
    strategy: str = "passthrough"

    def discard(self) -> None:
        if self.workdir is not None:
            shutil.rmtree(self.workdir, ignore_errors=True)
            self.workdir = None


class ConversionStrategy:
    name = "strategy"

    def convert(self, source: Path, file_type: str) -> Optional[NormalizedDocument]:
        raise NotImplementedError


class RemoteConversionStrategy(ConversionStrategy):
    """
    Hosted conversion service (ConvertAPI-compatible).

    The file is posted to ``{base_url}/convert/{type}/to/pdf``; the JSON reply
    carries ``Files[0].Url`` which is then downloaded.
    """

    name = "remote conversion service"

    def __init__(self, base_url: str, secret: str, temp_root: Path, timeout: float = 60) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.secret = secret or ""
        self.temp_root = Path(temp_root)
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.secret)

    def convert(self, source: Path, file_type: str) -> Optional[NormalizedDocument]:
        if not self.configured:
            logger.info("Remote conversion not configured, skipping")
            return None

        workdir = make_work_dir(self.temp_root, f"remote-{source.stem}")
        try:
            pdf_url = self._submit(source, file_type)
            pdf_path = workdir / f"{source.stem}.pdf"
            self._download(pdf_url, pdf_path)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Remote conversion failed for {source.name}, falling back: {exc}")
            shutil.rmtree(workdir, ignore_errors=True)
            return None

        logger.info(f"Remote conversion succeeded: {pdf_path}")
        return NormalizedDocument(pdf_path=pdf_path, workdir=workdir, strategy=self.name)

    def _submit(self, source: Path, file_type: str) -> str:
        url = f"{self.base_url}/convert/{file_type}/to/pdf"
        with source.open("rb") as handle:
            response = requests.post(
                url,
                params={"Secret": self.secret},
                files={"File": (source.name, handle, mime_type_for(file_type))},
                timeout=self.timeout,
            )
        response.raise_for_status()

        result = response.json()
        files = result.get("Files") if isinstance(result, dict) else None
        if not files or not isinstance(files[0], dict) or not files[0].get("Url"):
            raise ValueError(f"Malformed conversion result: {result!r}")
        return files[0]["Url"]

    def _download(self, pdf_url: str, destination: Path) -> None:
        with requests.get(pdf_url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            with destination.open("wb") as buffer:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    buffer.write(chunk)

        with destination.open("rb") as handle:
            signature = handle.read(len(PDF_SIGNATURE))
        if signature != PDF_SIGNATURE:
            raise ValueError(f"Downloaded file is not a PDF (starts with {signature!r})")


class LocalEngineStrategy(ConversionStrategy):
    """
    Headless LibreOffice conversion.

    The engine's exit status is logged but not trusted: LibreOffice can exit
    non-zero after writing a good PDF and zero without writing anything, so the
    presence of the expected output file is the only success criterion.
    """

    name = "local headless engine"

    def __init__(self, command: str, temp_root: Path, timeout: float = 30) -> None:
        self.command = command
        self.temp_root = Path(temp_root)
        self.timeout = timeout

    def convert(self, source: Path, file_type: str) -> Optional[NormalizedDocument]:
        workdir = make_work_dir(self.temp_root, f"local-{source.stem}")
        args = [self.command, *LOCAL_ENGINE_FLAGS, "--outdir", str(workdir), str(source)]

        try:
            completed = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
            if completed.returncode != 0:
                stderr = (completed.stderr or b"").decode("utf-8", errors="replace")
                logger.warning(f"Local engine exited with code {completed.returncode}: {stderr[:500]}")
        except subprocess.TimeoutExpired:
            # subprocess.run kills the child before re-raising
            logger.warning(f"Local engine timed out after {self.timeout}s converting {source.name}")
            shutil.rmtree(workdir, ignore_errors=True)
            return None
        except OSError as exc:
            logger.warning(f"Local engine could not be started ({self.command}): {exc}")
            shutil.rmtree(workdir, ignore_errors=True)
            return None

        pdf_path = workdir / f"{source.stem}.pdf"
        if not pdf_path.is_file():
            logger.warning(f"Local engine produced no PDF for {source.name}")
            shutil.rmtree(workdir, ignore_errors=True)
            return None

        logger.info(f"Local conversion succeeded: {pdf_path}")
        return NormalizedDocument(pdf_path=pdf_path, workdir=workdir, strategy=self.name)


class FormatNormalizer:
    def __init__(self, strategies: Sequence[ConversionStrategy]) -> None:
        self.strategies: List[ConversionStrategy] = list(strategies)

    @classmethod
    def from_settings(cls, settings) -> "FormatNormalizer":
        temp_root = Path(settings.storage.temp_root)
        remote = settings.conversion.remote
        local = settings.conversion.local
        return cls(
            [
                RemoteConversionStrategy(remote.base_url, remote.secret, temp_root, timeout=remote.timeout),
                LocalEngineStrategy(local.command, temp_root, timeout=local.timeout),
            ]
        )

    def normalize(self, source: Path | str, file_type: str) -> NormalizedDocument:
        """
        Produce a PDF for ``source``.

        PDFs pass through untouched. Anything else goes through the strategies
        in order until one yields a file.

        Raises:
            UnsupportedDocumentType: If ``file_type`` is not supported
            ConversionFailed: If every strategy came back empty
        """
        source = Path(source)
        if file_type not in SUPPORTED_TYPES:
            raise UnsupportedDocumentType(file_type, source.name)
        if file_type == "pdf":
            return NormalizedDocument(pdf_path=source)

        attempted: List[str] = []
        for strategy in self.strategies:
            attempted.append(strategy.name)
            result = strategy.convert(source, file_type)
            if result is not None and result.pdf_path.is_file():
                return result
            if result is not None:
                result.discard()

        logger.error(f"All conversion strategies failed for {source.name}: {attempted}")
        raise ConversionFailed(source.name, attempted)
