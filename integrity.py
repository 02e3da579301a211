# integrity.py — structural markers a rewritten core must keep
"""
A candidate rewrite of the embryo core is only accepted when it still carries
every capability the update loop depends on: it must touch the filesystem,
spawn processes, feed the result of work() onward, read the API key from the
environment, and call the integrity check, the safe writer and the retrying
fetch by name.

This is a textual heuristic. It says nothing about whether the candidate runs.
"""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import settings


@dataclass(frozen=True)
class IntegrityMarker:
    name: str
    pattern: str
    flags: int = re.MULTILINE

    def matches(self, text: str) -> bool:
        return re.search(self.pattern, text, self.flags) is not None


def default_markers(api_key_env: str = settings.API_KEY_ENV) -> List[IntegrityMarker]:
    """Return the eight markers every accepted core must contain."""
    return [
        IntegrityMarker("fs_import",
                        r"^\s*(?:import|from)\s+(?:os|pathlib|shutil)\b"),
        IntegrityMarker("process_import",
                        r"^\s*(?:import|from)\s+subprocess\b"),
        IntegrityMarker("work_continuation",
                        r"=\s*work\(.*\)"),
        IntegrityMarker("api_key_env",
                        re.escape(api_key_env)),
        IntegrityMarker("integrity_check",
                        r"\bvalidate_code_integrity\b"),
        IntegrityMarker("safe_write",
                        r"\bsafe_write_with_backup\b"),
        IntegrityMarker("fetch_with_retry",
                        r"\bsecure_fetch_with_retry\b"),
        IntegrityMarker("main_entry",
                        r"\bmain\s*\(\)"),
    ]


DEFAULT_MARKERS: Sequence[IntegrityMarker] = tuple(default_markers())


def missing_markers(code: str, markers: Optional[Iterable[IntegrityMarker]] = None) -> List[str]:
    """Names of the markers `code` fails to match, in declaration order."""
    markers = DEFAULT_MARKERS if markers is None else markers
    return [m.name for m in markers if not m.matches(code)]


def validate_code_integrity(code: str, markers: Optional[Iterable[IntegrityMarker]] = None) -> bool:
    """True only if every marker matches somewhere in `code`."""
    return not missing_markers(code, markers)
