"""
Download adapter — fetch a file over HTTP(S), once.

Skips when the destination already exists and is non-empty. The body is
written to a temp file beside the destination and renamed into place,
so an interrupted download never leaves a truncated file that would
later count as "already downloaded".
"""

from __future__ import annotations

import logging
import tempfile
import urllib.error
import urllib.request
from pathlib import Path

from archsetup import __version__
from archsetup.adapters.base import Adapter, ExecutionContext
from archsetup.core.models.result import StepResult
from archsetup.core.models.step import DownloadFile

logger = logging.getLogger(__name__)

_CHUNK = 64 * 1024


class DownloadAdapter(Adapter):
    """Fetch URLs to local paths with urllib."""

    @property
    def name(self) -> str:
        return "download"

    def is_available(self) -> bool:
        return True

    def is_satisfied(self, context: ExecutionContext) -> bool:
        step = context.step
        assert isinstance(step, DownloadFile)
        dest = context.resolve(step.dest)
        return dest.is_file() and dest.stat().st_size > 0

    def execute(self, context: ExecutionContext) -> StepResult:
        step = context.step
        assert isinstance(step, DownloadFile)
        dest = context.resolve(step.dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Downloading %s → %s", step.url, dest)
        request = urllib.request.Request(step.url, headers={"User-Agent": f"archsetup/{__version__}"})
        fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=".download_", suffix=".tmp")
        tmp = Path(tmp_name)
        size = 0
        try:
            with open(fd, "wb") as out, urllib.request.urlopen(request, timeout=context.timeout) as resp:
                for chunk in iter(lambda: resp.read(_CHUNK), b""):
                    out.write(chunk)
                    size += len(chunk)
            tmp.replace(dest)
        except urllib.error.HTTPError as e:
            tmp.unlink(missing_ok=True)
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"HTTP {e.code} fetching {step.url}",
                failure_kind="network",
            )
        except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
            tmp.unlink(missing_ok=True)
            reason = getattr(e, "reason", e)
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"Cannot fetch {step.url}: {reason}",
                failure_kind="network",
            )
        except OSError as e:
            tmp.unlink(missing_ok=True)
            return StepResult.failure(
                step_id=step.id,
                kind=step.kind,
                reason=f"Cannot write {dest}: {e}",
                failure_kind="unexpected",
            )

        return StepResult.success(
            step_id=step.id,
            kind=step.kind,
            output=f"Downloaded {size} bytes to {dest}",
            metadata={"path": str(dest), "size": size, "url": step.url},
        )
