"""Dispute letter delivery: render .tex -> PDF, upload to blob storage, record on the CRM contact.

Runs fire-and-forget after a job completes. Nothing here can fail a job;
every failure is a logged warning.
"""

import asyncio
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from underwriteiq.core.blob import BlobClient
from underwriteiq.core.constants import PDFLATEX_TIMEOUT
from underwriteiq.core.errors import UpstreamError
from underwriteiq.core.logger import logger
from underwriteiq.latex.letters import LetterSource, build_letters
from underwriteiq.models import Bureaus
from underwriteiq.services.crm import CRMClient

# macOS BasicTeX installs pdflatex here, but it's often not in the default PATH.
_MACTEX_BIN = "/Library/TeX/texbin/pdflatex"

# Strong references to in-flight deliveries; the event loop only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


def find_pdflatex() -> str | None:
    path = shutil.which("pdflatex")
    if path:
        return path
    if Path(_MACTEX_BIN).exists():
        return _MACTEX_BIN
    return None


def compile_letter(tex_content: str, pdflatex_bin: str) -> bytes:
    """Compile one letter in a temp dir and return the PDF bytes.

    Raises RuntimeError if compilation fails.
    """
    with tempfile.TemporaryDirectory(prefix="uwiq_letter_") as tmpdir:
        tmp_path = Path(tmpdir)
        tex_path = tmp_path / "letter.tex"
        tex_path.write_text(tex_content)

        result = subprocess.run(
            [
                pdflatex_bin,
                "-interaction=nonstopmode",
                "-halt-on-error",
                "-output-directory", str(tmp_path),
                str(tex_path),
            ],
            capture_output=True,
            text=True,
            timeout=PDFLATEX_TIMEOUT,
            cwd=str(tmp_path),
        )
        pdf_path = tmp_path / "letter.pdf"
        if result.returncode != 0 or not pdf_path.exists():
            error_lines = [line for line in result.stdout.split("\n") if line.startswith("!")]
            error_msg = "\n".join(error_lines[:5]) if error_lines else result.stderr[-300:]
            raise RuntimeError(f"pdflatex compilation failed: {error_msg}")
        return pdf_path.read_bytes()


@dataclass
class DeliveryReport:
    contact_id: str | None
    path: str
    uploaded: dict[str, str] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)
    crm_updated: bool = False


class LetterDelivery:
    def __init__(self, blob: BlobClient, crm: CRMClient) -> None:
        self.blob = blob
        self.crm = crm

    async def deliver(
        self,
        contact_id: str | None,
        path: str,
        bureaus: Bureaus,
        consumer_name: str | None,
    ) -> DeliveryReport:
        report = DeliveryReport(contact_id=contact_id, path=path)
        pdflatex_bin = find_pdflatex()
        if pdflatex_bin is None:
            logger.warning("Letters: pdflatex not found, skipping letter delivery")
            return report

        letters: list[LetterSource] = build_letters(path, bureaus, consumer_name)
        storage_id = contact_id or "unassigned"
        for letter in letters:
            try:
                pdf_bytes = await asyncio.to_thread(compile_letter, letter.tex, pdflatex_bin)
                ref = await self.blob.put(f"letters/{storage_id}/{letter.filename}", pdf_bytes)
            except (RuntimeError, subprocess.TimeoutExpired, UpstreamError) as e:
                logger.warning(f"Letters: {letter.key} failed: {e}")
                report.failed.append(letter.key)
                continue
            report.uploaded[letter.key] = ref.url

        logger.info(f"Letters: {len(report.uploaded)} uploaded, {len(report.failed)} failed ({path} path)")

        if contact_id and report.uploaded:
            result = await self.crm.upload_letters(contact_id, report.uploaded, path)
            report.crm_updated = result.ok
        return report

    def dispatch(
        self,
        contact_id: str | None,
        path: str,
        bureaus: Bureaus,
        consumer_name: str | None,
    ) -> asyncio.Task:
        """Schedule ``deliver`` without awaiting it."""
        task = asyncio.create_task(self._deliver_logged(contact_id, path, bureaus, consumer_name))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def _deliver_logged(self, contact_id, path, bureaus, consumer_name) -> DeliveryReport | None:
        try:
            return await self.deliver(contact_id, path, bureaus, consumer_name)
        except Exception as e:
            logger.warning(f"Letters: delivery crashed: {e}")
            return None


async def drain_background_tasks(timeout: float | None = None) -> None:
    """Wait for in-flight letter deliveries (shutdown + tests)."""
    if _background_tasks:
        await asyncio.wait(set(_background_tasks), timeout=timeout)
