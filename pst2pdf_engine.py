"""
PST to PDF Engine - Core conversion logic
Extracts messages from Outlook .pst archives, threads them by subject and
renders the conversations into a single paginated PDF
"""

import atexit
import io
import json
import os
import re
import shutil
import subprocess
import sys
import tempfile
import threading
import traceback
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple
from xml.sax.saxutils import escape

from email import policy
from email.parser import BytesParser

from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from pypdf import PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer

NO_SUBJECT = "(no subject)"
NO_BODY = "[no body]"
EPOCH = datetime(1970, 1, 1)

PDF_TITLE = "PST Export"
PDF_PRODUCER = "pst2pdf"

EXTRACT_SUBDIR = "eml"
EMAIL_EXTENSIONS = (".eml",)
ARCHIVE_EXTENSIONS = (".pst",)
READPST_NAME = "readpst.exe" if os.name == "nt" else "readpst"

_REPLY_PREFIX = re.compile(r"^\s*(re|fw|fwd)\s*:\s*", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Module-level tracking of temp dirs for atexit cleanup if process is killed.
_active_temp_dirs: Set[str] = set()
_active_temp_dirs_lock = threading.Lock()


def _atexit_cleanup_temp_dirs():
    """Last-resort cleanup of temp dirs when the process exits."""
    with _active_temp_dirs_lock:
        for d in list(_active_temp_dirs):
            shutil.rmtree(d, ignore_errors=True)
        _active_temp_dirs.clear()


atexit.register(_atexit_cleanup_temp_dirs)


class Pst2PdfError(RuntimeError):
    """Base class for conversion failures that abort one archive."""


class ArchiveNotFoundError(Pst2PdfError):
    """Raised when the input .pst archive does not exist."""


class ReadPstNotFoundError(Pst2PdfError):
    """Raised when the readpst executable cannot be launched."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"readpst not found or not executable: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ReadPstFailedError(Pst2PdfError):
    """Raised when readpst runs but does not exit cleanly."""

    def __init__(self, returncode: Optional[int], stderr: str = "", timed_out: bool = False):
        self.returncode = returncode
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            headline = f"readpst timed out and was killed (code {returncode})"
        else:
            headline = f"readpst failed (code {returncode})"
        super().__init__(f"{headline}\n{stderr}".rstrip())


class PdfRenderError(Pst2PdfError):
    """Raised when the PDF cannot be produced or written."""


def _record_warning(warnings: Optional[List[Dict]], code: str, message: str, **context) -> None:
    """Append a structured warning when a warning collector is provided."""
    if warnings is None:
        return
    warning = {'code': code, 'message': message}
    warning.update(context)
    warnings.append(warning)


def _safe_progress(callback, *args) -> None:
    """Call a progress callback, swallowing exceptions to avoid crashing the batch."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        pass


def _make_writable_temp_dir(prefix: str) -> str:
    """
    Create a writable temporary directory and register it for atexit cleanup.
    Falls back to the current directory when the system temp dir is unusable.
    """
    base_candidates = [tempfile.gettempdir(), os.getcwd()]

    for base_dir in base_candidates:
        if not base_dir:
            continue
        try:
            os.makedirs(base_dir, exist_ok=True)
        except OSError:
            continue

        for _ in range(8):
            candidate = os.path.join(base_dir, f"{prefix}{uuid.uuid4().hex}")
            try:
                os.makedirs(candidate, exist_ok=False)
                probe = os.path.join(candidate, ".write_probe")
                with open(probe, "wb") as handle:
                    handle.write(b"ok")
                os.remove(probe)
            except OSError:
                shutil.rmtree(candidate, ignore_errors=True)
                continue
            with _active_temp_dirs_lock:
                _active_temp_dirs.add(candidate)
            return candidate

    raise RuntimeError("Unable to create a writable temporary directory.")


def _remove_workdir(path: str) -> None:
    shutil.rmtree(path, ignore_errors=True)
    with _active_temp_dirs_lock:
        _active_temp_dirs.discard(path)


def _remove_empty_dir(path: str) -> None:
    """Remove ``path`` only if nothing is left inside it."""
    try:
        os.rmdir(path)
    except OSError:
        pass


def _new_run_id() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]


def _sync_warning_events(
    warnings: List[Dict],
    cursor: int,
    run_logger: Optional["RunLogger"],
) -> int:
    """Forward warnings recorded since ``cursor`` to the run log."""
    if not run_logger:
        return len(warnings)
    while cursor < len(warnings):
        warning = warnings[cursor]
        context = {
            key: value
            for key, value in warning.items()
            if key not in {"code", "message"}
        }
        run_logger.log("warning", warning.get("code", "warning"), warning.get("message", ""), **context)
        cursor += 1
    return cursor


def default_output_path(pst_path: str) -> str:
    """``/data/mail.pst`` -> ``/data/mail.pdf``"""
    stem = os.path.splitext(os.path.basename(pst_path))[0]
    return os.path.join(os.path.dirname(os.path.abspath(pst_path)), stem + ".pdf")


class RunLogger:
    """Persist run events to text and JSONL logs."""

    _PATH_KEYS = {"file", "archive", "output", "output_file", "workdir", "path", "source"}

    def __init__(
        self,
        logs_dir: Optional[str],
        run_id: str,
        enabled: bool = True,
        privacy_mode: str = "redacted",
        event_callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    ):
        self.enabled = bool(enabled and logs_dir)
        self.privacy_mode = privacy_mode
        self.run_id = run_id
        self.logs_dir = logs_dir
        self.event_callback = event_callback
        self.text_log_path = None
        self.jsonl_log_path = None
        self._text_handle = None
        self._jsonl_handle = None

        if self.enabled:
            os.makedirs(self.logs_dir, exist_ok=True)
            self.text_log_path = os.path.join(logs_dir, f"run_{run_id}.log")
            self.jsonl_log_path = os.path.join(logs_dir, f"run_{run_id}.jsonl")
            self._text_handle = open(self.text_log_path, "a", encoding="utf-8")
            self._jsonl_handle = open(self.jsonl_log_path, "a", encoding="utf-8")

    def close(self) -> None:
        for handle in (self._text_handle, self._jsonl_handle):
            if handle is not None and not handle.closed:
                handle.close()

    def _redact_value(self, key: str, value):
        if self.privacy_mode != "redacted":
            return value
        if isinstance(value, str) and key.lower() in self._PATH_KEYS:
            return os.path.basename(value)
        return value

    def log(self, level: str, event: str, message: str, **context) -> None:
        payload = {
            "ts": datetime.now().isoformat(),
            "run_id": self.run_id,
            "level": level.upper(),
            "event": event,
            "message": message,
            "context": {key: self._redact_value(key, value) for key, value in context.items()},
        }
        if self.enabled:
            self._jsonl_handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
            self._jsonl_handle.flush()

            text_context = ""
            if payload["context"]:
                context_parts = [f"{key}={value}" for key, value in sorted(payload["context"].items())]
                text_context = " | " + ", ".join(context_parts)
            self._text_handle.write(f"[{payload['ts']}] {payload['level']} {event}: {message}{text_context}\n")
            self._text_handle.flush()
        _safe_progress(self.event_callback, payload)


def bundled_readpst_path() -> str:
    """Location of a readpst binary shipped alongside the program."""
    base_dir = getattr(sys, "_MEIPASS", None) or os.path.dirname(os.path.abspath(__file__))
    return os.path.join(base_dir, "bin", READPST_NAME)


def resolve_readpst_binary(explicit_path: Optional[str] = None) -> str:
    """Explicit path first, then the bundled copy, then whatever PATH finds."""
    if explicit_path:
        return explicit_path
    bundled = bundled_readpst_path()
    if os.path.isfile(bundled):
        return bundled
    return "readpst"


class ReadPstProcess:
    """
    Scoped handle around one readpst child process.

    Entering launches the process; ``wait()`` drains both pipes and records
    the exit code. Leaving the block always reaps the child, killing it first
    if it is still running.
    """

    def __init__(self, command: Sequence[str], timeout_seconds: Optional[float] = None):
        self.command = list(command)
        self.timeout_seconds = timeout_seconds
        self.process: Optional[subprocess.Popen] = None
        self.returncode: Optional[int] = None
        self.stdout = ""
        self.stderr = ""

    def __enter__(self):
        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise ReadPstNotFoundError(self.command[0], exc.strerror or str(exc)) from exc
        return self

    def _capture(self, out: Optional[bytes], err: Optional[bytes]) -> None:
        self.stdout = (out or b"").decode("utf-8", errors="replace")
        self.stderr = (err or b"").decode("utf-8", errors="replace")
        self.returncode = self.process.returncode

    def wait(self) -> int:
        if self.process is None:
            raise RuntimeError("readpst process has not been started.")
        try:
            out, err = self.process.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self.process.kill()
            out, err = self.process.communicate()
            self._capture(out, err)
            raise ReadPstFailedError(self.returncode, self.stderr, timed_out=True)
        self._capture(out, err)
        return self.returncode

    def __exit__(self, exc_type, exc, tb):
        if self.process is not None:
            if self.process.poll() is None:
                self.process.kill()
                out, err = self.process.communicate()
                self._capture(out, err)
            for stream in (self.process.stdout, self.process.stderr):
                if stream is not None and not stream.closed:
                    stream.close()
            self.returncode = self.process.returncode
        return False


class ReadPstExtractor:
    """Turns a .pst archive into one .eml file per message using readpst."""

    def __init__(self, readpst_bin: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.readpst_bin = resolve_readpst_binary(readpst_bin)
        self.timeout_seconds = timeout_seconds

    def build_command(self, pst_path: str, output_dir: str) -> List[str]:
        # -e: eml per message, -m: split output, -b: safe basenames
        return [self.readpst_bin, "-e", "-m", "-b", "-o", output_dir, pst_path]

    def extract(self, pst_path: str, output_dir: str) -> None:
        os.makedirs(output_dir, exist_ok=True)
        with ReadPstProcess(self.build_command(pst_path, output_dir), self.timeout_seconds) as process:
            returncode = process.wait()
        if returncode != 0:
            raise ReadPstFailedError(returncode, process.stderr)


class EmailFileCollection:
    """
    Restartable view over the files below ``root`` whose extension matches.

    Nothing is read until iteration starts, and every iteration walks the
    directory again in sorted order.
    """

    def __init__(self, root: str, extensions: Iterable[str] = EMAIL_EXTENSIONS, recursive: bool = True):
        self.root = root
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.recursive = recursive

    def matches(self, file_name: str) -> bool:
        return os.path.splitext(file_name)[1].lower() in self.extensions

    def __iter__(self) -> Iterator[str]:
        if not os.path.isdir(self.root):
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            if not self.recursive:
                dirnames[:] = []
            for filename in sorted(filenames):
                if self.matches(filename):
                    yield os.path.join(dirpath, filename)


@dataclass(frozen=True)
class EmailRecord:
    file_path: str
    subject: Optional[str]
    normalized_subject: str
    timestamp: datetime
    sender: str = ""
    recipients: str = ""
    cc: str = ""
    body: str = ""


@dataclass(frozen=True)
class EmailThread:
    subject: str
    emails: Tuple[EmailRecord, ...]

    @property
    def key(self) -> str:
        return self.subject.casefold()

    @property
    def started_at(self) -> datetime:
        return self.emails[0].timestamp


def html_to_text(html: str) -> str:
    """Strip markup from an HTML body, keeping line breaks between blocks."""
    if not html or not html.strip():
        return ""
    soup = BeautifulSoup(html, "lxml")
    for element in soup(["script", "style", "head", "meta", "link"]):
        element.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(["p", "div", "tr", "li", "h1", "h2", "h3", "h4", "h5", "h6"]):
        tag.insert_before("\n")
        tag.insert_after("\n")

    text = re.sub(r"[^\S\n]+", " ", soup.get_text())
    lines = [line.strip() for line in text.split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


class EmailThreader:
    """Groups emails into conversation threads"""

    @staticmethod
    def normalize_subject(subject: Optional[str]) -> str:
        """Trim and drop a single leading RE:/FW:/FWD: marker."""
        if not subject or not subject.strip():
            return NO_SUBJECT
        normalized = _REPLY_PREFIX.sub("", subject.strip(), count=1)
        return normalized or NO_SUBJECT

    @staticmethod
    def normalize_date(date_value) -> datetime:
        """Normalize date values to naive UTC datetimes for safe sorting."""
        try:
            if isinstance(date_value, datetime):
                parsed = date_value
            elif isinstance(date_value, str) and date_value.strip():
                parsed = date_parser.parse(date_value)
            else:
                return EPOCH

            # Offsets past +/-24h or dates at the edge of the calendar fail here
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        except (ValueError, TypeError, OverflowError):
            return EPOCH
        return parsed

    def group_emails(self, emails: Iterable[EmailRecord]) -> List[EmailThread]:
        """
        Group emails into threads by case-insensitive normalized subject

        Args:
            emails: Records in discovery order

        Returns:
            Threads ordered by their earliest message, each with its messages
            in ascending date order. Both sorts are stable, so equal dates
            keep discovery order.
        """
        groups: "OrderedDict[str, List[EmailRecord]]" = OrderedDict()
        for email in emails:
            groups.setdefault(email.normalized_subject.casefold(), []).append(email)

        threads = []
        for members in groups.values():
            ordered = sorted(members, key=lambda e: e.timestamp)
            threads.append(EmailThread(subject=ordered[0].normalized_subject, emails=tuple(ordered)))

        threads.sort(key=lambda t: t.started_at)
        return threads


class EmailExtractor:
    """Extracts email content and metadata from .eml files"""

    @staticmethod
    def _body_text(msg) -> str:
        body_part = msg.get_body(preferencelist=('plain', 'html'))
        if body_part is None:
            return ''
        try:
            content = body_part.get_content()
        except (LookupError, UnicodeError):
            payload = body_part.get_payload(decode=True) or b''
            content = payload.decode('utf-8', errors='replace')
        if not isinstance(content, str):
            return ''
        if body_part.get_content_subtype() == 'html':
            return html_to_text(content)
        return content.strip()

    @staticmethod
    def _raw_header(msg, name: str) -> str:
        for key, value in msg.raw_items():
            if key.lower() == name:
                return re.sub(r"\r?\n[ \t]*", " ", str(value)).strip()
        return ''

    @staticmethod
    def _address_header(msg, name: str) -> str:
        """Structured header text, or the raw value when the address parser chokes."""
        try:
            return str(msg.get(name, '') or '')
        except (AttributeError, IndexError, TypeError, ValueError):
            return EmailExtractor._raw_header(msg, name)

    @staticmethod
    def extract_eml(file_path: str) -> EmailRecord:
        """Parse one .eml file. Raises when the file cannot be read or parsed."""
        with open(file_path, 'rb') as f:
            msg = BytesParser(policy=policy.default).parse(f)

        subject = msg.get('subject')
        subject = str(subject) if subject is not None else None
        try:
            date_header = msg.get('date')
        except (TypeError, ValueError):
            date_header = None

        return EmailRecord(
            file_path=file_path,
            subject=subject,
            normalized_subject=EmailThreader.normalize_subject(subject),
            timestamp=EmailThreader.normalize_date(str(date_header) if date_header is not None else None),
            sender=EmailExtractor._address_header(msg, 'from'),
            recipients=EmailExtractor._address_header(msg, 'to'),
            cc=EmailExtractor._address_header(msg, 'cc'),
            body=EmailExtractor._body_text(msg),
        )


class EmailLoader:
    """Loads .eml files into records, skipping the ones that fail to parse."""

    def __init__(self, email_extractor: Optional[EmailExtractor] = None):
        self.email_extractor = email_extractor or EmailExtractor()

    def load(
        self,
        email_files: Iterable[str],
        max_emails: int = 0,
        warnings: Optional[List[Dict]] = None,
    ) -> Tuple[List[EmailRecord], Dict[str, int]]:
        records: List[EmailRecord] = []
        stats = {
            "parsed_total": 0,
            "failed_total": 0,
        }

        for email_file in email_files:
            if max_emails and len(records) >= max_emails:
                break
            try:
                record = self.email_extractor.extract_eml(email_file)
            except Exception as exc:
                _record_warning(
                    warnings,
                    'email_extract_failed',
                    'Could not parse email file; skipping file',
                    file=email_file,
                    error=str(exc),
                )
                print(f"Warning: Failed to parse {email_file}: {exc}")
                stats["failed_total"] += 1
                continue
            records.append(record)
            stats["parsed_total"] += 1

        return records, stats


class _ThreadDocTemplate(SimpleDocTemplate):
    """Remembers the page on which each thread heading was drawn."""

    def __init__(self, filename, **kw):
        super().__init__(filename, **kw)
        self.thread_pages: Dict[int, int] = {}

    def afterFlowable(self, flowable):
        thread_index = getattr(flowable, "thread_index", None)
        if thread_index is not None and thread_index not in self.thread_pages:
            self.thread_pages[thread_index] = self.page - 1


class PdfThreadRenderer:
    """Renders ordered email threads into one PDF, one thread per page run."""

    def __init__(self, pagesize=letter, margin: float = 50):
        self.pagesize = pagesize
        self.margin = margin
        self.title_style = ParagraphStyle("ThreadTitle", fontName="Helvetica", fontSize=18, leading=22)
        self.separator_style = ParagraphStyle("Separator", fontName="Helvetica", fontSize=12, leading=15)
        self.header_style = ParagraphStyle(
            "Header", fontName="Helvetica", fontSize=10, leading=12, textColor=colors.HexColor("#333333"),
        )
        self.body_style = ParagraphStyle("Body", fontName="Helvetica", fontSize=11, leading=14, spaceAfter=6)

    @staticmethod
    def _markup(text: str) -> str:
        cleaned = _CONTROL_CHARS.sub("", text).replace("\t", "    ")
        return escape(cleaned).replace("\n", "<br/>")

    @staticmethod
    def format_timestamp(timestamp: datetime) -> str:
        return timestamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{timestamp.microsecond // 1000:03d}Z"

    def _body_paragraphs(self, body: str) -> List[Paragraph]:
        blocks = [block.strip("\n") for block in re.split(r"\n\s*\n", body or "")]
        blocks = [block for block in blocks if block.strip()]
        if not blocks:
            blocks = [NO_BODY]
        return [Paragraph(self._markup(block), self.body_style) for block in blocks]

    def build_story(self, threads: Sequence[EmailThread]) -> List:
        story: List = []
        if not threads:
            story.append(Paragraph("No messages found in archive.", self.title_style))
            return story

        for index, thread in enumerate(threads):
            if index > 0:
                story.append(PageBreak())
            heading = Paragraph(f"<u>Subject: {self._markup(thread.subject)}</u>", self.title_style)
            heading.thread_index = index
            story.append(heading)
            story.append(Spacer(1, 9))
            for email in thread.emails:
                story.append(Paragraph("—", self.separator_style))
                story.append(Paragraph(f"Date: {self.format_timestamp(email.timestamp)}", self.header_style))
                story.append(Paragraph(f"From: {self._markup(email.sender)}", self.header_style))
                story.append(Paragraph(f"To: {self._markup(email.recipients)}", self.header_style))
                if email.cc:
                    story.append(Paragraph(f"Cc: {self._markup(email.cc)}", self.header_style))
                story.append(Spacer(1, 4))
                story.extend(self._body_paragraphs(email.body))
                story.append(Spacer(1, 12))
        return story

    def render(self, threads: Sequence[EmailThread], output_pdf: str) -> int:
        """Write ``threads`` to ``output_pdf``. Returns the page count."""
        buffer = io.BytesIO()
        doc = _ThreadDocTemplate(
            buffer,
            pagesize=self.pagesize,
            leftMargin=self.margin,
            rightMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=PDF_TITLE,
            creator=PDF_PRODUCER,
        )
        try:
            doc.build(self.build_story(threads))
        except Exception as exc:
            raise PdfRenderError(f"Could not lay out PDF: {exc}") from exc

        reader = PdfReader(io.BytesIO(buffer.getvalue()))
        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        for index, thread in enumerate(threads):
            page_index = doc.thread_pages.get(index)
            if page_index is not None:
                writer.add_outline_item(thread.subject, page_index)
        writer.add_metadata({"/Title": PDF_TITLE, "/Producer": PDF_PRODUCER})

        try:
            parent = os.path.dirname(os.path.abspath(output_pdf))
            os.makedirs(parent, exist_ok=True)
            with open(output_pdf, 'wb') as f:
                writer.write(f)
        except OSError as exc:
            raise PdfRenderError(f"Could not write {output_pdf}: {exc}") from exc
        return len(reader.pages)


class PstConversionOrchestrator:
    """Coordinates extraction, threading and rendering for one or many archives"""

    def __init__(
        self,
        readpst_bin: Optional[str] = None,
        workdir: Optional[str] = None,
        keep_workdir: bool = False,
        max_emails: int = 0,
        readpst_timeout_seconds: Optional[float] = None,
        logs_dir: Optional[str] = None,
        logs_subdir: str = "logs",
        enable_detailed_logging: bool = True,
        log_privacy_mode: str = "redacted",
        manifest_name: str = "conversion_manifest.json",
    ):
        self.extractor = ReadPstExtractor(readpst_bin, timeout_seconds=readpst_timeout_seconds)
        self.email_loader = EmailLoader()
        self.email_threader = EmailThreader()
        self.pdf_renderer = PdfThreadRenderer()
        self.workdir = workdir
        self.keep_workdir = keep_workdir
        self.max_emails = max(0, int(max_emails or 0))
        self.readpst_timeout_seconds = readpst_timeout_seconds
        self.logs_dir = logs_dir
        self.logs_subdir = logs_subdir
        self.enable_detailed_logging = enable_detailed_logging
        self.log_privacy_mode = log_privacy_mode
        self.manifest_name = manifest_name

    def _open_run_logger(self, logs_dir: Optional[str], run_id: str, event_callback=None) -> RunLogger:
        return RunLogger(
            logs_dir=logs_dir,
            run_id=run_id,
            enabled=self.enable_detailed_logging,
            privacy_mode=self.log_privacy_mode,
            event_callback=event_callback,
        )

    def _release_workdir(self, workdir: str) -> None:
        if self.keep_workdir:
            print(f"Working directory kept at: {workdir}")
        else:
            _remove_workdir(workdir)

    def convert_archive(
        self,
        pst_path: str,
        output_pdf: Optional[str] = None,
        workdir: Optional[str] = None,
        run_logger: Optional[RunLogger] = None,
    ) -> Dict[str, Any]:
        """
        Convert one .pst archive into one PDF

        Args:
            pst_path: Archive to convert
            output_pdf: Target PDF; defaults to the archive path with .pdf
            workdir: Working directory override (batch mode uses one per archive)
            run_logger: Shared logger; a private one is opened when omitted

        Returns:
            Dict with conversion statistics
        """
        if not pst_path or not os.path.isfile(pst_path):
            raise ArchiveNotFoundError(f"Input .pst not found: {pst_path}")
        output_pdf = output_pdf or default_output_path(pst_path)

        workdir = workdir or self.workdir
        if workdir:
            os.makedirs(workdir, exist_ok=True)
        else:
            workdir = _make_writable_temp_dir(prefix="pst2pdf-")

        owns_logger = run_logger is None
        if run_logger is None:
            try:
                run_logger = self._open_run_logger(self.logs_dir, _new_run_id())
            except Exception:
                self._release_workdir(workdir)
                raise

        warnings: List[Dict] = []
        warning_cursor = 0
        summary: Dict[str, Any] = {
            'input_path': pst_path,
            'output_file': None,
            'run_id': run_logger.run_id,
            'emails': {
                'parsed_total': 0,
                'failed_total': 0,
                'threads_total': 0,
            },
            'pages_total': 0,
            'warnings': warnings,
            'workdir': workdir,
            'workdir_kept': self.keep_workdir,
            'logs': {
                'text_log': run_logger.text_log_path,
                'jsonl_log': run_logger.jsonl_log_path,
            },
        }

        try:
            extract_dir = os.path.join(workdir, EXTRACT_SUBDIR)
            # Start from an empty extraction folder
            shutil.rmtree(extract_dir, ignore_errors=True)
            print(f"Extracting {pst_path} with {self.extractor.readpst_bin} ...")
            run_logger.log("info", "extract_start", "Running readpst", archive=pst_path, workdir=workdir)
            self.extractor.extract(pst_path, extract_dir)
            run_logger.log("info", "extract_end", "readpst finished", archive=pst_path)

            records, stats = self.email_loader.load(
                EmailFileCollection(extract_dir, EMAIL_EXTENSIONS),
                max_emails=self.max_emails,
                warnings=warnings,
            )
            summary['emails'].update(stats)
            warning_cursor = _sync_warning_events(warnings, warning_cursor, run_logger)
            print(f"  Loaded {stats['parsed_total']} emails ({stats['failed_total']} failed)")
            run_logger.log("info", "emails_loaded", "Loaded email files", archive=pst_path, **stats)

            threads = self.email_threader.group_emails(records)
            summary['emails']['threads_total'] = len(threads)
            run_logger.log("info", "threads_grouped", "Grouped emails into threads", thread_count=len(threads))

            summary['pages_total'] = self.pdf_renderer.render(threads, output_pdf)
            summary['output_file'] = output_pdf
            print(f"    Created: {output_pdf} ({len(threads)} threads, {summary['pages_total']} pages)")
            run_logger.log(
                "info",
                "pdf_written",
                "Wrote PDF output",
                output_file=output_pdf,
                threads=len(threads),
                pages=summary['pages_total'],
            )
        except Exception as exc:
            run_logger.log("error", "archive_failed", "Archive conversion failed", archive=pst_path, error=str(exc))
            raise
        finally:
            _sync_warning_events(warnings, warning_cursor, run_logger)
            self._release_workdir(workdir)
            if owns_logger:
                run_logger.close()

        return summary

    def convert_batch(
        self,
        input_dir: str,
        output_dir: str,
        progress_callback=None,
        event_callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        """
        Convert every .pst in ``input_dir`` to ``output_dir/<name>.pdf``

        Archives run one after another; a failing archive is reported in the
        manifest and the batch moves on.
        """
        os.makedirs(input_dir, exist_ok=True)
        os.makedirs(output_dir, exist_ok=True)
        logs_dir = self.logs_dir or os.path.join(output_dir, self.logs_subdir)
        run_id = _new_run_id()
        run_logger = self._open_run_logger(logs_dir, run_id, event_callback=event_callback)

        archive_paths = list(EmailFileCollection(input_dir, ARCHIVE_EXTENSIONS, recursive=False))
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        manifest: Dict[str, Any] = {}

        try:
            run_logger.log("info", "batch_start", "Scanning for archives", path=input_dir, archive_count=len(archive_paths))
            if not archive_paths:
                print(f"No .pst files found in {input_dir}")
                print(f"Copy your .pst archives into {os.path.abspath(input_dir)} and run again.")

            for index, pst_path in enumerate(archive_paths, 1):
                stem = os.path.splitext(os.path.basename(pst_path))[0]
                output_pdf = os.path.join(output_dir, stem + ".pdf")
                archive_workdir = os.path.join(self.workdir, stem) if self.workdir else None
                print(f"\n[{index}/{len(archive_paths)}] {os.path.basename(pst_path)}")
                try:
                    results.append(
                        self.convert_archive(pst_path, output_pdf, workdir=archive_workdir, run_logger=run_logger)
                    )
                except Exception as exc:
                    errors.append(
                        {
                            "code": "archive_failed",
                            "message": "Archive conversion failed",
                            "archive": pst_path,
                            "error": str(exc),
                            "traceback": traceback.format_exc(),
                        }
                    )
                    print(f"Error: {os.path.basename(pst_path)}: {exc}", file=sys.stderr)
                _safe_progress(progress_callback, index, len(archive_paths), f"Processed {os.path.basename(pst_path)}")

            manifest = {
                'timestamp': datetime.now().isoformat(),
                'run_id': run_id,
                'archives_found': len(archive_paths),
                'archives': results,
                'paths': {
                    'input_dir': input_dir,
                    'output_dir': output_dir,
                    'logs_dir': logs_dir if run_logger.enabled else None,
                },
                'summary': {
                    'archives_converted': len(results),
                    'archives_failed': len(errors),
                    'emails_parsed_total': sum(r['emails']['parsed_total'] for r in results),
                    'emails_failed_total': sum(r['emails']['failed_total'] for r in results),
                    'threads_total': sum(r['emails']['threads_total'] for r in results),
                },
                'errors': errors,
            }

            manifest_path = os.path.join(output_dir, self.manifest_name)
            try:
                with open(manifest_path, 'w', encoding='utf-8') as f:
                    json.dump(manifest, f, indent=2, default=str)
                run_logger.log("info", "manifest_written", "Wrote conversion manifest", path=manifest_path)
            except OSError as manifest_exc:
                run_logger.log(
                    "warning",
                    "manifest_write_failed",
                    f"Could not write {self.manifest_name}: {manifest_exc}",
                    path=manifest_path,
                )
                manifest['manifest_write_error'] = str(manifest_exc)
        finally:
            if self.workdir and not self.keep_workdir:
                _remove_empty_dir(self.workdir)
            run_logger.close()

        return manifest
