from __future__ import annotations

import re
from datetime import datetime, timezone

from testvault.shared.contracts import SubmissionKey, utcnow
from testvault.shared.errors import InvalidSubmissionKeyError


_TIMESTAMP_PREFIX_RE = re.compile(r"^(\d+)_(.+)$", re.DOTALL)
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def resolve_submission_key(path: str, now: datetime | None = None) -> SubmissionKey:
    """Split ``[<unix-timestamp>_]<filename>`` into a submission key.

    Paths without a timestamp prefix take the receipt time, truncated to the
    second, so older sync clients that only send the filename keep working.
    """
    if not path or not path.strip():
        raise InvalidSubmissionKeyError("Submission key is empty")
    _reject_unsafe(path)

    match = _TIMESTAMP_PREFIX_RE.match(path)
    if match:
        submitted_at = _from_unix_seconds(match.group(1))
        filename = match.group(2)
    else:
        submitted_at = (now or utcnow()).astimezone(timezone.utc).replace(microsecond=0)
        filename = path

    if filename.strip() in {".", ".."}:
        raise InvalidSubmissionKeyError(f"Submission filename {filename!r} is not allowed")

    return SubmissionKey(submitted_at=submitted_at, filename=filename)


def _reject_unsafe(path: str) -> None:
    if "/" in path or "\\" in path:
        raise InvalidSubmissionKeyError("Submission key must not contain path separators")
    if _CONTROL_RE.search(path):
        raise InvalidSubmissionKeyError("Submission key must not contain control characters")


def _from_unix_seconds(raw: str) -> datetime:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise InvalidSubmissionKeyError(f"Submission timestamp out of range: {raw}") from exc
